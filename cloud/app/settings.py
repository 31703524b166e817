from __future__ import annotations
import os

DATABASE_URL = os.environ["DATABASE_URL"]
DATABASE_ECHO = os.environ.get("DATABASE_ECHO", "0") == "1"
REDIS_URL = os.environ["REDIS_URL"]
SCRIPTS_KEY = os.environ.get("SCRIPTS_KEY", "defaultci:scripts")
RECONCILE_LOCK_SECONDS = int(os.environ.get("RECONCILE_LOCK_SECONDS", "120"))
# comma separated callers allowed to see container actions, "*" for everyone
READERS = [r.strip() for r in os.environ.get("READERS", "*").split(",") if r.strip()]
