from __future__ import annotations

from datetime import datetime, timezone
import re
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON text elsewhere (SQLite in dev and tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


_ID_RE = re.compile(r"[0-9a-f]{32}")


def new_id() -> str:
    return uuid4().hex


def is_record_id(value: str) -> bool:
    return bool(_ID_RE.fullmatch(value or ""))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on read; stored values are always UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class AuditMixin:
    # Shared envelope for every core record; deleted_* marks soft deletes.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(String, nullable=True)


class Organization(AuditMixin, Base):
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String, unique=True)
    # Tenant namespace names derive from the slug, so it never changes after creation.
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    owner_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    scan_counter: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0", nullable=False)
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    billing: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class Identity(AuditMixin, Base):
    __tablename__ = "identities"

    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String, default="")
    last_name: Mapped[str] = mapped_column(String, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    current_org_id: Mapped[str | None] = mapped_column(String, nullable=True)


class User(AuditMixin, Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("organization_id", "email", name="uq_users_org_email"),)

    identity_id: Mapped[str] = mapped_column(String, ForeignKey("identities.id", ondelete="CASCADE"), index=True)
    organization_id: Mapped[str] = mapped_column(String, index=True)
    email: Mapped[str] = mapped_column(String)
    first_name: Mapped[str] = mapped_column(String, default="")
    last_name: Mapped[str] = mapped_column(String, default="")
    role: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Category(AuditMixin, Base):
    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String, index=True)
    # Data collections are named "<slug>_data" inside each tenant namespace.
    slug: Mapped[str] = mapped_column(String, unique=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    primary_field: Mapped[str | None] = mapped_column(String, nullable=True)
    # Ordered field tree; table fields carry nested children.
    fields: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Format(AuditMixin, Base):
    __tablename__ = "formats"

    category_id: Mapped[str] = mapped_column(String, ForeignKey("categories.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String)
    format_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    extraction_fields: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    documents: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    extracted_sample: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class Subscription(AuditMixin, Base):
    __tablename__ = "subscriptions"

    organization_id: Mapped[str] = mapped_column(String, index=True)
    stripe_sub_id: Mapped[str] = mapped_column(String)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_period_days: Mapped[int] = mapped_column(Integer, default=0)
    billing_cycle: Mapped[str] = mapped_column(String, default="monthly")
    status: Mapped[str] = mapped_column(String, default="trialing")
    is_current: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class MeterEvent(AuditMixin, Base):
    __tablename__ = "meter_events"

    org_id: Mapped[str] = mapped_column(String, index=True)
    event_name: Mapped[str] = mapped_column(String)
    event_value: Mapped[int] = mapped_column(Integer, default=1)
    stripe_customer_id: Mapped[str] = mapped_column(String)
    # External identifier returned by the payment provider, if any.
    identifier: Mapped[str | None] = mapped_column(String, nullable=True)
