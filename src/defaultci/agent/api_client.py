# agent/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urljoin


class APIError(Exception):
    """Raised when API requests fail."""
    pass


class APIClient:
    """HTTP client for the defaultci control plane."""

    def __init__(self, base_url: str, agent_id: str):
        """
        Initialize API client.

        Args:
            base_url: Base URL of the API (e.g., "https://api.example.com")
            agent_id: Identifier sent as the caller of every scan
        """
        self.base_url = base_url.rstrip("/")
        self.agent_id = agent_id

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """
        Make an HTTP request to the API.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path (e.g., "/containers/web/scans")
            data: Optional JSON data to send in request body
            headers: Optional additional headers

        Returns:
            Parsed JSON response as dictionary

        Raises:
            APIError: If the request fails
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))

        req_headers = {
            "Content-Type": "application/json",
            "X-Caller": self.agent_id,
        }
        if headers:
            req_headers.update(headers)

        req_data = None
        if data is not None:
            req_data = json.dumps(data).encode("utf-8")

        req = urllib.request.Request(url, data=req_data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def submit_scan(self, container: str, branches: List[Dict[str, Any]]) -> dict:
        """
        Post one scan of `container` and trigger a reconciliation pass.

        Returns:
            The pass summary, with "status" one of applied|queued|superseded
        """
        return self._request(
            "POST",
            f"/containers/{quote(container, safe='')}/scans",
            data={"branches": branches},
        )

    def get_jobs(self, container: str) -> List[Dict[str, Any]]:
        response = self._request("GET", f"/containers/{quote(container, safe='')}/jobs")
        return list(response.get("jobs", []))
