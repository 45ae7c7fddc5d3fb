"""Invite PINs: issuing and redeeming short-lived 6-digit codes."""

import logging
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete
from sqlmodel import Session, select

from doorlink.access.ledger import create_pending_request, normalize_device_id
from doorlink.access.models import AccessGrant, Device, InviteCode, User
from doorlink.errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

INVITE_TTL_SECONDS = 5 * 60


def _as_utc(value: datetime) -> datetime:
    # SQLite stores naive datetimes; all stored values are UTC
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def generate_code() -> str:
    """Draw a 6-digit code from a cryptographically secure source."""
    return str(100000 + secrets.randbelow(900000))


def code_exists(session: Session, code: str) -> bool:
    return session.exec(select(InviteCode).where(InviteCode.code == code)).first() is not None


def issue(
    session: Session,
    device: Device,
    ttl_seconds: int = INVITE_TTL_SECONDS,
    now: datetime | None = None,
) -> tuple[str, int]:
    """Create a live invite code for a device. Returns (code, validity seconds)."""
    now = now or datetime.now(UTC)
    code = generate_code()
    while code_exists(session, code):
        logger.debug("Invite code collision, drawing again")
        code = generate_code()

    invite = InviteCode(code=code, device_id=device.id, expires_at=now + timedelta(seconds=ttl_seconds))
    session.add(invite)
    session.commit()
    logger.info("Invite code issued for device '%s', expires at %s", device.external_id, invite.expires_at)
    return code, ttl_seconds


def redeem(
    session: Session,
    code: str,
    device_external_id: str,
    user: User,
    now: datetime | None = None,
) -> AccessGrant:
    """Turn an invite code into a pending member request.

    The code is single use: it is burned before the request is recorded and
    stays burned even if the request then fails (for example because the
    user already has access).

    Raises:
        NotFoundError: No live invite matches the code.
        ForbiddenError: The code has expired (it is deleted) or belongs to
            another device (it stays live).
        ConflictError: The user already has a pending or accepted grant.
    """
    now = now or datetime.now(UTC)
    invite = session.exec(select(InviteCode).where(InviteCode.code == code)).first()
    if invite is None:
        logger.warning("Access request failed: invalid invite code")
        raise NotFoundError("Invalid or expired invite code")

    if now >= _as_utc(invite.expires_at):
        session.delete(invite)
        session.commit()
        logger.warning("Access request failed: invite code has expired")
        raise ForbiddenError("Invite code has expired")

    device = session.get(Device, invite.device_id)
    if device is None or device.external_id != normalize_device_id(device_external_id):
        logger.warning("Access request failed: invite code is not valid for '%s'", device_external_id)
        raise ForbiddenError("Invite code is not valid for this device")

    result = session.exec(delete(InviteCode).where(InviteCode.id == invite.id))  # type: ignore[call-overload]
    session.commit()
    if result.rowcount != 1:
        # Another request consumed it first
        raise NotFoundError("Invalid or expired invite code")
    logger.debug("Invite code for device '%s' consumed by '%s'", device.external_id, user.username)

    return create_pending_request(session, user, device)


def delete_expired(session: Session, now: datetime | None = None) -> int:
    """Delete every invite whose window has closed. Returns the count."""
    # Naive UTC for SQLite compatibility (SQLite strips tzinfo)
    cutoff = (now or datetime.now(UTC)).astimezone(UTC).replace(tzinfo=None)
    stmt = delete(InviteCode).where(InviteCode.expires_at < cutoff)  # type: ignore[operator]
    result = session.exec(stmt, execution_options={"synchronize_session": False})  # type: ignore[call-overload]
    session.commit()
    return result.rowcount
