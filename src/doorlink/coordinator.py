"""Device access coordinator: the user-facing operations.

Each operation resolves the acting user and the device, applies the
ledger's rules, and for command-class operations hands the payload to the
session registry. Ledger and registry failures propagate unchanged.
"""

import enum
import json
import logging
from dataclasses import dataclass

from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from doorlink.access import invites, ledger
from doorlink.access.models import AccessGrant, DeviceRole
from doorlink.auth import require_user
from doorlink.errors import UnavailableError
from doorlink.relay.registry import SessionRegistry

logger = logging.getLogger(__name__)


class DeviceCommand(enum.StrEnum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    STOP = "STOP"


@dataclass
class DeviceSummary:
    """One entry of a user's device list."""

    device_id: str
    name: str | None
    role: DeviceRole
    online: bool


@dataclass
class Invite:
    code: str
    ttl_seconds: int


class DeviceAccessCoordinator:
    def __init__(self, registry: SessionRegistry, invite_ttl_seconds: int = invites.INVITE_TTL_SECONDS) -> None:
        self.registry = registry
        self.invite_ttl_seconds = invite_ttl_seconds

    # --- Ownership and membership ---

    def claim(self, session: Session, device_id: str, device_password: str, username: str) -> AccessGrant:
        user = require_user(session, username)
        logger.info("User '%s' attempting to claim device '%s'", username, device_id)
        _device, grant = ledger.record_claim(session, user, device_id, device_password)
        return grant

    def generate_invite(self, session: Session, device_id: str, username: str) -> Invite:
        admin = require_user(session, username)
        device = ledger.get_device(session, device_id)
        ledger.require_admin(session, admin, device)
        code, ttl = invites.issue(session, device, ttl_seconds=self.invite_ttl_seconds)
        return Invite(code=code, ttl_seconds=ttl)

    def request_access(self, session: Session, device_id: str, code: str, username: str) -> AccessGrant:
        user = require_user(session, username)
        logger.info("User '%s' requesting access to device '%s'", username, device_id)
        return invites.redeem(session, code, device_id, user)

    def approve(self, session: Session, access_id: int, username: str) -> AccessGrant:
        admin = require_user(session, username)
        return ledger.approve(session, access_id, admin)

    def reject(self, session: Session, access_id: int, username: str) -> None:
        admin = require_user(session, username)
        ledger.reject(session, access_id, admin)

    def remove_member(self, session: Session, access_id: int, username: str) -> None:
        admin = require_user(session, username)
        ledger.remove_member(session, access_id, admin)

    def recover_admin(self, session: Session, device_id: str, master_password: str, username: str) -> AccessGrant:
        user = require_user(session, username)
        device = ledger.get_device(session, device_id)
        logger.info("User '%s' attempting admin recovery for device '%s'", username, device.external_id)
        return ledger.recover_admin(session, device, user, master_password)

    def list_devices(self, session: Session, username: str) -> list[DeviceSummary]:
        user = require_user(session, username)
        summaries = []
        for grant in ledger.list_accepted_grants(session, user):
            device = grant.device
            summaries.append(
                DeviceSummary(
                    device_id=device.external_id,
                    name=device.name,
                    role=grant.role,
                    online=self.registry.is_online(device.external_id),
                )
            )
        return summaries

    def list_members(self, session: Session, device_id: str, username: str) -> list[AccessGrant]:
        admin = require_user(session, username)
        device = ledger.get_device(session, device_id)
        return ledger.list_device_grants(session, device, admin)

    def rename_device(self, session: Session, device_id: str, new_name: str, username: str) -> None:
        admin = require_user(session, username)
        device = ledger.get_device(session, device_id)
        ledger.rename_device(session, device, new_name, admin)

    async def delete_device(self, session: Session, device_id: str, username: str) -> None:
        external_id = await run_in_threadpool(self._delete_device_record, session, device_id, username)
        await self.registry.evict(external_id)

    def _delete_device_record(self, session: Session, device_id: str, username: str) -> str:
        admin = require_user(session, username)
        device = ledger.get_device(session, device_id)
        external_id = device.external_id
        ledger.delete_device(session, device, admin)
        return external_id

    # --- Commands ---

    async def send_command(self, session: Session, device_id: str, action: DeviceCommand, username: str) -> None:
        external_id = await run_in_threadpool(self._authorize_command, session, device_id, action, username)
        await self._deliver(external_id, str(action))

    def _authorize_command(self, session: Session, device_id: str, action: DeviceCommand, username: str) -> str:
        user = require_user(session, username)
        device = ledger.get_device(session, device_id)
        grant = ledger.require_accepted(session, user, device)
        logger.info("User '%s' (%s) sending %s to device '%s'", username, grant.role, action, device.external_id)
        return device.external_id

    async def set_offline_password(self, session: Session, device_id: str, new_password: str, username: str) -> None:
        external_id = await run_in_threadpool(self._authorize_admin, session, device_id, username)
        payload = json.dumps({"type": "SET_OFFLINE_PASS", "password": new_password})
        logger.info("Admin '%s' setting offline password for device '%s'", username, external_id)
        await self._deliver(external_id, payload)

    def _authorize_admin(self, session: Session, device_id: str, username: str) -> str:
        admin = require_user(session, username)
        device = ledger.get_device(session, device_id)
        ledger.require_admin(session, admin, device)
        return device.external_id

    async def _deliver(self, external_id: str, payload: str) -> None:
        if not await self.registry.send(external_id, payload):
            logger.warning("Device '%s' is offline, nothing sent", external_id)
            raise UnavailableError("Device is offline. Command not sent.")
