"""Tests for the expiry sweeper."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlmodel import select

import doorlink.database as db_module
from doorlink.access.invites import issue
from doorlink.access.models import AccessGrant, AccessStatus, DeviceRole, InviteCode
from doorlink.access.sweeper import ExpirySweeper, sweep_expired


def _add_grant(session, user, device, status, created_at) -> AccessGrant:
    grant = AccessGrant(
        user_id=user.id,
        device_id=device.id,
        role=DeviceRole.member,
        status=status,
        created_at=created_at,
    )
    session.add(grant)
    session.commit()
    session.refresh(grant)
    return grant


class TestSweepExpired:
    def test_removes_expired_invites_and_stale_requests(self, session, bob, carol, device):
        now = datetime.now(UTC)
        issue(session, device, now=now - timedelta(minutes=10))
        live_code, _ = issue(session, device, now=now)
        _add_grant(session, bob, device, AccessStatus.pending, now - timedelta(hours=49))
        fresh = _add_grant(session, carol, device, AccessStatus.pending, now - timedelta(hours=1))

        assert sweep_expired(session, now=now) == (1, 1)

        assert [i.code for i in session.exec(select(InviteCode)).all()] == [live_code]
        pending = session.exec(select(AccessGrant).where(AccessGrant.status == AccessStatus.pending)).all()
        assert [g.id for g in pending] == [fresh.id]

    def test_keeps_old_accepted_grants(self, session, bob, device):
        now = datetime.now(UTC)
        old = _add_grant(session, bob, device, AccessStatus.accepted, now - timedelta(days=30))
        assert sweep_expired(session, now=now) == (0, 0)
        assert session.get(AccessGrant, old.id) is not None

    def test_custom_pending_ttl(self, session, bob, device):
        now = datetime.now(UTC)
        _add_grant(session, bob, device, AccessStatus.pending, now - timedelta(hours=3))
        assert sweep_expired(session, now=now, pending_ttl_hours=2) == (0, 1)

    def test_nothing_to_do(self, session, device):
        assert sweep_expired(session) == (0, 0)


class TestExpirySweeper:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        sweeper = ExpirySweeper(interval=3600)
        await sweeper.start()
        assert sweeper._task is not None
        assert not sweeper._task.done()
        await sweeper.stop()
        assert sweeper._task.done()

    @pytest.mark.asyncio
    async def test_loop_sweeps_periodically(self, engine, session, bob, device, monkeypatch):
        monkeypatch.setattr(db_module, "engine", engine)
        issue(session, device, now=datetime.now(UTC) - timedelta(minutes=10))

        sweeper = ExpirySweeper(interval=0.01)
        await sweeper.start()
        for _ in range(100):
            await asyncio.sleep(0.01)
            if not session.exec(select(InviteCode)).all():
                break
        await sweeper.stop()

        assert session.exec(select(InviteCode)).all() == []

    @pytest.mark.asyncio
    async def test_loop_survives_sweep_errors(self, monkeypatch):
        calls = []

        def failing_sweep():
            calls.append(1)
            raise RuntimeError("database is locked")

        sweeper = ExpirySweeper(interval=0.01)
        monkeypatch.setattr(sweeper, "sweep_once", failing_sweep)
        await sweeper.start()
        for _ in range(100):
            await asyncio.sleep(0.01)
            if len(calls) >= 2:
                break
        await sweeper.stop()

        assert len(calls) >= 2
