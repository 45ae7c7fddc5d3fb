"""User, device, access grant and invite code models."""

import enum
from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


class DeviceRole(enum.StrEnum):
    admin = "admin"
    member = "member"


class AccessStatus(enum.StrEnum):
    pending = "pending"
    accepted = "accepted"


class GrantKind(enum.StrEnum):
    """Meaningful (role, status) combinations of an AccessGrant."""

    pending_member = "pending_member"
    accepted_member = "accepted_member"
    accepted_admin = "accepted_admin"


class User(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    password_hash: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Device(SQLModel, table=True):
    """A claimed physical device.

    ``master_hash`` is the bcrypt hash of the master password set at claim
    time; it is only ever used for admin recovery.
    """

    __tablename__ = "devices"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    external_id: str = Field(unique=True, index=True)  # normalized MAC address
    name: str | None = None
    master_hash: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AccessGrant(SQLModel, table=True):
    """One user's relationship to one device."""

    __tablename__ = "access_grants"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "device_id"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    device_id: int = Field(foreign_key="devices.id", index=True)
    role: DeviceRole = DeviceRole.member
    status: AccessStatus = AccessStatus.pending
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Relationships
    user: User | None = Relationship()
    device: Device | None = Relationship()

    @property
    def kind(self) -> GrantKind:
        if self.status == AccessStatus.pending:
            return GrantKind.pending_member
        if self.role == DeviceRole.admin:
            return GrantKind.accepted_admin
        return GrantKind.accepted_member


class InviteCode(SQLModel, table=True):
    """A short-lived 6-digit PIN letting another user request access."""

    __tablename__ = "invite_codes"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    device_id: int = Field(foreign_key="devices.id", index=True)
    expires_at: datetime
