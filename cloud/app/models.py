from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from datetime import datetime

class Base(DeclarativeBase):
    pass

class Container(Base):
    __tablename__ = "containers"
    name: Mapped[str] = mapped_column(sa.Text, primary_key=True)
    script_id: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default=sa.text("'Jenkinsfile'"))
    use_sandbox: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.false())
    orphan_grace_passes: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default=sa.text("1"))
    factory_kind: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default=sa.text("'defaults'"))
    last_pass_seq: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, server_default=sa.text("0"))
    created_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False)

class BranchJob(Base):
    __tablename__ = "branch_jobs"
    __table_args__ = (sa.UniqueConstraint("container_name", "branch_name", name="uq_branch_jobs_container_branch"),)
    id: Mapped[str] = mapped_column(UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))
    container_name: Mapped[str] = mapped_column(sa.Text, sa.ForeignKey("containers.name", ondelete="CASCADE"), nullable=False)
    branch_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    kind: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default=sa.text("'pipeline'"))
    script_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    use_sandbox: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)
    last_materialized_at: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, server_default=sa.text("0"))
    missed_passes: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default=sa.text("0"))
    disabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.false())
    last_error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), onupdate=sa.func.now(), nullable=False)
