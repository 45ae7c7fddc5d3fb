"""Access ledger: device ownership, grants and the rules that guard them.

Every mutating function runs its read-then-write in one transaction and
commits before returning. Failures are raised as ``doorlink.errors`` types.
"""

import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from doorlink.access.models import AccessGrant, AccessStatus, Device, DeviceRole, InviteCode, User
from doorlink.auth import hash_password, verify_password
from doorlink.errors import ConflictError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

_MAC_RE = re.compile(r"^([0-9A-F]{2}:){5}[0-9A-F]{2}$")


def normalize_device_id(device_id: str) -> str:
    """Normalize a hardware address to uppercase colon-separated format."""
    cleaned = device_id.strip().upper().replace("-", ":").replace(".", "")
    # Handle bare hex (e.g. "AABBCCDDEEFF")
    if ":" not in cleaned and len(cleaned) == 12:
        cleaned = ":".join(cleaned[i : i + 2] for i in range(0, 12, 2))
    return cleaned


def is_mac_address(device_id: str) -> bool:
    return bool(_MAC_RE.match(normalize_device_id(device_id)))


# --- Lookups ---


def find_device(session: Session, external_id: str) -> Device | None:
    stmt = select(Device).where(Device.external_id == normalize_device_id(external_id))
    return session.exec(stmt).first()


def get_device(session: Session, external_id: str) -> Device:
    """Get a device by its hardware identifier or raise NotFoundError."""
    device = find_device(session, external_id)
    if device is None:
        raise NotFoundError(f"Device not found: {external_id}")
    return device


def get_grant(session: Session, grant_id: int) -> AccessGrant:
    grant = session.get(AccessGrant, grant_id)
    if grant is None:
        raise NotFoundError(f"Access record not found: {grant_id}")
    return grant


def find_grant(session: Session, user: User, device: Device) -> AccessGrant | None:
    stmt = select(AccessGrant).where(
        AccessGrant.user_id == user.id,
        AccessGrant.device_id == device.id,
    )
    return session.exec(stmt).first()


def list_accepted_grants(session: Session, user: User) -> list[AccessGrant]:
    """Grants through which the user may currently act on a device."""
    stmt = (
        select(AccessGrant)
        .where(AccessGrant.user_id == user.id, AccessGrant.status == AccessStatus.accepted)
        .order_by(AccessGrant.created_at)  # type: ignore[arg-type]
    )
    return list(session.exec(stmt).all())


def list_device_grants(session: Session, device: Device, acting_admin: User) -> list[AccessGrant]:
    """All grants of a device, pending ones included. Admin only."""
    require_admin(session, acting_admin, device)
    stmt = (
        select(AccessGrant)
        .where(AccessGrant.device_id == device.id)
        .order_by(AccessGrant.created_at)  # type: ignore[arg-type]
    )
    return list(session.exec(stmt).all())


# --- Permission checks ---


def require_accepted(session: Session, user: User, device: Device) -> AccessGrant:
    """Return the user's accepted grant on the device, whatever its role."""
    grant = find_grant(session, user, device)
    if grant is None or grant.status != AccessStatus.accepted:
        logger.warning(
            "Permission denied: '%s' has no accepted access to device '%s'",
            user.username,
            device.external_id,
        )
        raise ForbiddenError("User does not have accepted access to this device")
    return grant


def require_admin(session: Session, user: User, device: Device) -> AccessGrant:
    grant = find_grant(session, user, device)
    if grant is None or grant.status != AccessStatus.accepted or grant.role != DeviceRole.admin:
        logger.warning(
            "Permission denied: '%s' is not ADMIN for device '%s'",
            user.username,
            device.external_id,
        )
        raise ForbiddenError("User is not an accepted ADMIN for this device")
    return grant


# --- Claim and membership ---


def record_claim(
    session: Session, user: User, external_id: str, master_password: str
) -> tuple[Device, AccessGrant]:
    """Register a new device with the claimant as its first admin.

    Raises:
        ConflictError: If the device is already registered, including when a
            concurrent claim for the same identifier commits first.
    """
    device_id = normalize_device_id(external_id)
    if find_device(session, device_id) is not None:
        logger.warning("Claim failed: device '%s' already exists", device_id)
        raise ConflictError("Device is already registered. Use admin recovery if you lost access.")

    device = Device(external_id=device_id, name=device_id, master_hash=hash_password(master_password))
    session.add(device)
    try:
        session.flush()
        grant = AccessGrant(
            user_id=user.id,
            device_id=device.id,
            role=DeviceRole.admin,
            status=AccessStatus.accepted,
        )
        session.add(grant)
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning("Claim failed: device '%s' was claimed concurrently", device_id)
        raise ConflictError("Device is already registered. Use admin recovery if you lost access.") from None

    session.refresh(device)
    session.refresh(grant)
    logger.info("Device '%s' claimed by '%s' (id=%s)", device_id, user.username, device.id)
    return device, grant


def create_pending_request(session: Session, user: User, device: Device) -> AccessGrant:
    """Record a MEMBER/PENDING request awaiting admin approval."""
    existing = find_grant(session, user, device)
    if existing is not None:
        if existing.status == AccessStatus.pending:
            raise ConflictError("You already have a pending request for this device")
        raise ConflictError("You already have access to this device")

    grant = AccessGrant(
        user_id=user.id,
        device_id=device.id,
        role=DeviceRole.member,
        status=AccessStatus.pending,
    )
    session.add(grant)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError("You already have a pending request for this device") from None
    session.refresh(grant)
    logger.info(
        "Access request %s created for '%s' on device '%s'",
        grant.id,
        user.username,
        device.external_id,
    )
    return grant


def _pending_grant(session: Session, grant_id: int) -> AccessGrant:
    grant = session.get(AccessGrant, grant_id)
    if grant is None or grant.status != AccessStatus.pending:
        raise NotFoundError("Access request not found or already processed")
    return grant


def approve(session: Session, grant_id: int, acting_admin: User) -> AccessGrant:
    grant = _pending_grant(session, grant_id)
    device = session.get(Device, grant.device_id)
    require_admin(session, acting_admin, device)

    grant.status = AccessStatus.accepted
    session.commit()
    session.refresh(grant)
    logger.info("Access request %s approved by '%s'", grant_id, acting_admin.username)
    return grant


def reject(session: Session, grant_id: int, acting_admin: User) -> None:
    """Delete a pending request so the user may ask again later."""
    grant = _pending_grant(session, grant_id)
    device = session.get(Device, grant.device_id)
    require_admin(session, acting_admin, device)

    session.delete(grant)
    session.commit()
    logger.info("Access request %s rejected by '%s'", grant_id, acting_admin.username)


def remove_member(session: Session, grant_id: int, acting_admin: User) -> None:
    """Delete another user's grant, keeping at least one accepted admin."""
    grant = get_grant(session, grant_id)
    device = session.get(Device, grant.device_id)
    require_admin(session, acting_admin, device)

    if grant.user_id == acting_admin.id:
        logger.warning("'%s' attempted to remove themselves from '%s'", acting_admin.username, device.external_id)
        raise ForbiddenError("Cannot remove yourself. Transfer the admin role first.")

    if grant.role == DeviceRole.admin and grant.status == AccessStatus.accepted:
        if not _delete_unless_last_admin(session, grant):
            logger.warning("Refusing to remove the last admin of '%s'", device.external_id)
            raise ForbiddenError("Cannot remove the last admin. Transfer the admin role first.")
    else:
        session.delete(grant)
        session.commit()
    logger.info("Access record %s removed from '%s' by '%s'", grant_id, device.external_id, acting_admin.username)


def _delete_unless_last_admin(session: Session, grant: AccessGrant) -> bool:
    """Delete an admin grant only while another accepted admin remains.

    The count and the delete are one statement, so two concurrent removals
    on the same device cannot both pass the count.
    """
    admins = aliased(AccessGrant)
    admin_count = (
        select(func.count())
        .select_from(admins)
        .where(
            admins.device_id == grant.device_id,
            admins.role == DeviceRole.admin,
            admins.status == AccessStatus.accepted,
        )
        .scalar_subquery()
    )
    stmt = delete(AccessGrant).where(AccessGrant.id == grant.id, admin_count > 1)
    result = session.exec(stmt, execution_options={"synchronize_session": False})  # type: ignore[call-overload]
    if result.rowcount != 1:
        session.rollback()
        return False
    session.commit()
    return True


def recover_admin(
    session: Session,
    device: Device,
    new_admin: User,
    master_password: str,
    verifier: Callable[[str, str], bool] = verify_password,
) -> AccessGrant:
    """Take over admin rights with the device's master password.

    Every other admin is downgraded to member, and the caller's grant is
    created or updated to an accepted admin grant, in a single commit.
    """
    if not verifier(master_password, device.master_hash):
        logger.warning("Admin recovery failed: wrong master password for '%s'", device.external_id)
        raise ForbiddenError("Invalid master password")

    stmt = select(AccessGrant).where(
        AccessGrant.device_id == device.id,
        AccessGrant.role == DeviceRole.admin,
        AccessGrant.user_id != new_admin.id,
    )
    old_admins = session.exec(stmt).all()
    for old in old_admins:
        old.role = DeviceRole.member
        session.add(old)

    grant = find_grant(session, new_admin, device)
    if grant is None:
        grant = AccessGrant(user_id=new_admin.id, device_id=device.id)
    grant.role = DeviceRole.admin
    grant.status = AccessStatus.accepted
    grant.created_at = datetime.now(UTC)
    session.add(grant)
    session.commit()
    session.refresh(grant)
    logger.info(
        "Admin rights on '%s' recovered by '%s' (%d admin(s) downgraded)",
        device.external_id,
        new_admin.username,
        len(old_admins),
    )
    return grant


# --- Device management ---


def rename_device(session: Session, device: Device, new_name: str, acting_admin: User) -> Device:
    require_admin(session, acting_admin, device)
    device.name = new_name
    session.add(device)
    session.commit()
    session.refresh(device)
    logger.info("Device '%s' renamed to '%s'", device.external_id, new_name)
    return device


def delete_device(session: Session, device: Device, acting_admin: User) -> None:
    """Delete a device together with all its grants and invite codes."""
    require_admin(session, acting_admin, device)
    external_id = device.external_id

    session.exec(delete(AccessGrant).where(AccessGrant.device_id == device.id))  # type: ignore[call-overload]
    session.exec(delete(InviteCode).where(InviteCode.device_id == device.id))  # type: ignore[call-overload]
    session.delete(device)
    session.commit()
    logger.warning("Device '%s' and all its access records deleted by '%s'", external_id, acting_admin.username)


def delete_stale_requests(session: Session, cutoff: datetime) -> int:
    """Delete pending requests created before the cutoff. Returns the count."""
    # Naive UTC for SQLite compatibility (SQLite strips tzinfo)
    naive_cutoff = cutoff.astimezone(UTC).replace(tzinfo=None)
    stmt = delete(AccessGrant).where(
        AccessGrant.status == AccessStatus.pending,
        AccessGrant.created_at < naive_cutoff,  # type: ignore[operator]
    )
    result = session.exec(stmt, execution_options={"synchronize_session": False})  # type: ignore[call-overload]
    session.commit()
    return result.rowcount
