"""REST API endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator
from sqlmodel import Session

from doorlink.access.ledger import is_mac_address
from doorlink.access.models import AccessGrant, AccessStatus, DeviceRole, GrantKind, User
from doorlink.auth import get_current_user, register_user
from doorlink.coordinator import DeviceAccessCoordinator, DeviceCommand, DeviceSummary
from doorlink.database import get_session

router = APIRouter(prefix="/api")


def get_coordinator(request: Request) -> DeviceAccessCoordinator:
    return request.app.state.coordinator


# Request models
class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=6)


class ClaimRequest(BaseModel):
    device_id: str
    device_password: str = Field(min_length=6)

    @field_validator("device_id")
    @classmethod
    def check_mac(cls, v: str) -> str:
        if not is_mac_address(v):
            raise ValueError("Invalid MAC address format")
        return v


class AccessRequest(BaseModel):
    device_id: str
    code: str = Field(pattern=r"^\d{6}$")


class CommandRequest(BaseModel):
    action: DeviceCommand


class RecoverRequest(BaseModel):
    master_password: str = Field(min_length=1)


class OfflinePasswordRequest(BaseModel):
    new_password: str = Field(min_length=6)


class RenameDeviceRequest(BaseModel):
    name: str = Field(min_length=3, max_length=50)


# Response models
class GrantResponse(BaseModel):
    id: int
    username: str
    device_id: str
    role: DeviceRole
    status: AccessStatus
    kind: GrantKind
    created_at: datetime


class InviteResponse(BaseModel):
    code: str
    ttl_seconds: int


def _grant_out(grant: AccessGrant) -> GrantResponse:
    return GrantResponse(
        id=grant.id,
        username=grant.user.username,
        device_id=grant.device.external_id,
        role=grant.role,
        status=grant.status,
        kind=grant.kind,
        created_at=grant.created_at,
    )


# --- Accounts ---


@router.post("/auth/register", status_code=201)
def register(
    request: RegisterRequest,
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    user = register_user(session, request.username, request.password)
    return {"id": user.id, "username": user.username}


@router.get("/auth/me")
def whoami(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {"id": user.id, "username": user.username}


# --- Devices ---


@router.post("/devices/claim", status_code=201)
def claim_device(
    request: ClaimRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> GrantResponse:
    grant = coordinator.claim(session, request.device_id, request.device_password, user.username)
    return _grant_out(grant)


@router.get("/devices")
def my_devices(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> list[DeviceSummary]:
    return coordinator.list_devices(session, user.username)


# Literal path must come before {device_id} parametric paths
@router.post("/devices/request-access", status_code=201)
def request_access(
    request: AccessRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> GrantResponse:
    grant = coordinator.request_access(session, request.device_id, request.code, user.username)
    return _grant_out(grant)


@router.post("/devices/{device_id}/invites", status_code=201)
def generate_invite(
    device_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> InviteResponse:
    invite = coordinator.generate_invite(session, device_id, user.username)
    return InviteResponse(code=invite.code, ttl_seconds=invite.ttl_seconds)


@router.get("/devices/{device_id}/members")
def list_members(
    device_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> list[GrantResponse]:
    return [_grant_out(g) for g in coordinator.list_members(session, device_id, user.username)]


@router.post("/devices/{device_id}/command")
async def send_command(
    device_id: str,
    request: CommandRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> dict[str, str]:
    await coordinator.send_command(session, device_id, request.action, user.username)
    return {"status": "sent", "action": request.action}


@router.post("/devices/{device_id}/recover-admin")
def recover_admin(
    device_id: str,
    request: RecoverRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> GrantResponse:
    grant = coordinator.recover_admin(session, device_id, request.master_password, user.username)
    return _grant_out(grant)


@router.post("/devices/{device_id}/offline-password")
async def set_offline_password(
    device_id: str,
    request: OfflinePasswordRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> dict[str, str]:
    await coordinator.set_offline_password(session, device_id, request.new_password, user.username)
    return {"status": "sent"}


@router.patch("/devices/{device_id}")
def rename_device(
    device_id: str,
    request: RenameDeviceRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> dict[str, str]:
    coordinator.rename_device(session, device_id, request.name, user.username)
    return {"status": "renamed", "name": request.name}


@router.delete("/devices/{device_id}")
async def delete_device(
    device_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> dict[str, str]:
    await coordinator.delete_device(session, device_id, user.username)
    return {"status": "deleted"}


# --- Access records ---


@router.post("/access/{access_id}/approve")
def approve_access(
    access_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> GrantResponse:
    grant = coordinator.approve(session, access_id, user.username)
    return _grant_out(grant)


@router.post("/access/{access_id}/reject")
def reject_access(
    access_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> dict[str, str]:
    coordinator.reject(session, access_id, user.username)
    return {"status": "rejected"}


@router.delete("/access/{access_id}")
def remove_member(
    access_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    coordinator: DeviceAccessCoordinator = Depends(get_coordinator),
) -> dict[str, str]:
    coordinator.remove_member(session, access_id, user.username)
    return {"status": "removed"}
