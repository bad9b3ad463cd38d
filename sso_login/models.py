"""
SQLAlchemy models for the SSO account collaborator: user accounts linked to a
provider subject, and the single-row OIDC settings record read at initialization.
"""
import json
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(64), nullable=False, default="employee")
    # Provider subject ("sub"); None until the account signs in via SSO
    oidc_sub: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)
    manager_first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    manager_last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    manager_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class OidcSettings(Base):
    """Single row (id=1). Secrets stay in the DB, never in code."""
    __tablename__ = "oidc_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    issuer_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    redirect_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    scope: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role_claim_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    default_role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # JSON object: internal role -> provider role name; NULL = identity mapping
    role_mapping: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def get_role_mapping(self) -> dict[str, str] | None:
        return json.loads(self.role_mapping) if self.role_mapping else None
