"""SQLAlchemy ORM models."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    func,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class DeploymentORM(Base):
    __tablename__ = "deployments"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    environment = Column(String(20), nullable=False)
    version = Column(String(100), nullable=True)
    status = Column(String(50), nullable=False, index=True)
    job_names = Column(JSON, nullable=False, default=list)
    rollback_job_names = Column(JSON, nullable=False, default=list)
    build_parameters = Column(JSON, nullable=False, default=dict)
    job_refs_data = Column(JSON, nullable=False, default=list)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    require_approval = Column(Boolean, nullable=False, default=False)
    author_id = Column(String(36), nullable=False)
    author_name = Column(String(255), nullable=False, default="")
    attempt = Column(Integer, nullable=False, default=0)
    executed_by_data = Column(JSON, nullable=True)
    rollback_data = Column(JSON, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_deployments_status_scheduled", "status", "scheduled_at"),
        Index("ix_deployments_created_at", "created_at"),
    )


class ApprovalORM(Base):
    __tablename__ = "deployment_approvals"

    id = Column(String(36), primary_key=True)
    deployment_id = Column(String(36), nullable=False, index=True)
    approver_id = Column(String(36), nullable=False)
    approver_name = Column(String(255), nullable=False, default="")
    level = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False)
    comment = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("deployment_id", "approver_id", "level", name="uq_approval_approver_level"),
    )


class DeploymentLogORM(Base):
    __tablename__ = "deployment_logs"

    deployment_id = Column(String(36), primary_key=True)
    sequence = Column(Integer, primary_key=True)
    job_ref = Column(String(255), nullable=False)
    job_label = Column(String(255), nullable=False)
    line_offset = Column(Integer, nullable=False)
    severity = Column(String(20), nullable=False, default="info")
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("deployment_id", "job_ref", "line_offset", name="uq_log_job_offset"),
    )


class ProjectORM(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(36), nullable=False)
    description = Column(Text, nullable=True, default="")
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class UserORM(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
