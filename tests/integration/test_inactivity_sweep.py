import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import select
from labwatch.models.alerts.alert import Alert
from labwatch.models.alerts.notification import Notification
from labwatch.models.shared.enums import EquipmentStatusType, SweepTrigger
import labwatch.main as main_module
from labwatch.services.breakdown.inactivity_sweep import SweepLock
from labwatch.workers.celery_tasks.breakdown_tasks import sweep_once

SWEEP_URL = "/api/v1/breakdowns/sweep/run"


async def breakdown_checks(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(Alert).order_by(Alert.id))
        return result.scalars().all()


@pytest.mark.asyncio
class TestInactivitySweep:
    """Daily breakdown check for idle equipment"""

    async def test_only_idle_unbroken_equipment_is_checked(
        self, client: AsyncClient, auth_headers, session_factory, seeded, set_last_used
    ):
        await set_last_used("LATHE-1", days=20)
        await set_last_used("MILL-2", days=2)
        await set_last_used("WELD-9", days=30)
        reported = await client.post("/api/v1/breakdowns/add", json={"equipmentId": "WELD-9"},
                                     headers=auth_headers("manager_other"))
        assert reported.status_code == status.HTTP_201_CREATED

        response = await client.post(SWEEP_URL, headers=auth_headers("policy"))

        assert response.status_code == status.HTTP_200_OK
        summary = response.json()
        assert summary["trigger"] == "MANUAL"
        assert summary["threshold_days"] == 15
        assert summary["matched"] == 1
        assert summary["alerted"] == 1

        alerts = await breakdown_checks(session_factory)
        assert len(alerts) == 1
        assert alerts[0].alert_type == "BREAKDOWN_CHECK"
        assert alerts[0].severity == "MEDIUM"
        assert alerts[0].equipment_id == seeded.equipment["LATHE-1"].id
        assert alerts[0].alert_metadata["days_inactive"] == 20

        async with session_factory() as session:
            result = await session.execute(select(Notification.user_id, Notification.notification_type))
            recipients = [tuple(row) for row in result.all()]
        assert recipients == [(seeded.user_ids["manager"], "BREAKDOWN_ALERT")]

    async def test_maintenance_and_faulty_equipment_are_skipped(self, inactivity_sweep, set_last_used):
        await set_last_used("LATHE-1", days=40, status=EquipmentStatusType.MAINTENANCE)
        await set_last_used("MILL-2", days=40, status=EquipmentStatusType.FAULTY)

        result = await inactivity_sweep.run()

        assert result.matched == 0

    async def test_pending_check_is_not_repeated(self, inactivity_sweep, session_factory, set_last_used):
        await set_last_used("LATHE-1", days=20)

        first = await inactivity_sweep.run()
        second = await inactivity_sweep.run()

        assert first.alerted == 1
        assert second.matched == 0
        assert len(await breakdown_checks(session_factory)) == 1

    async def test_answered_check_can_fire_again(
        self, client: AsyncClient, auth_headers, inactivity_sweep, set_last_used
    ):
        await set_last_used("LATHE-1", days=20)
        alert_id = (await inactivity_sweep.run()).alert_ids[0]

        await client.post(f"/api/v1/breakdowns/alert/{alert_id}/respond", json={"isBreakdown": False},
                          headers=auth_headers("manager"))

        assert (await inactivity_sweep.run()).alerted == 1

    async def test_manual_run_while_busy_conflicts(self, client: AsyncClient, auth_headers, inactivity_sweep):
        assert await inactivity_sweep.lock.acquire()
        try:
            response = await client.post(SWEEP_URL, headers=auth_headers("policy"))
            assert response.status_code == status.HTTP_409_CONFLICT

            skipped = await inactivity_sweep.run(trigger=SweepTrigger.SCHEDULED)
            assert skipped.skipped is True
            assert skipped.matched == 0
        finally:
            await inactivity_sweep.lock.release()

    async def test_only_policy_makers_trigger(self, client: AsyncClient, auth_headers):
        response = await client.post(SWEEP_URL, headers=auth_headers("manager"))
        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_worker_entry_point(self, session_factory, seeded, set_last_used):
        await set_last_used("MILL-2", days=16)

        summary = await sweep_once(session_factory, lock=SweepLock())

        assert summary["trigger"] == "SCHEDULED"
        assert summary["alerted"] == 1
        assert isinstance(summary["started_at"], str)


@pytest.mark.asyncio
async def test_app_shutdown_closes_the_sweep_lock(monkeypatch):
    closed = []

    async def record_close(lock):
        closed.append(lock)

    monkeypatch.setattr(main_module, "setup_logging", lambda: None)
    monkeypatch.setattr(SweepLock, "close", record_close)

    async with main_module.lifespan(main_module.app):
        lock = main_module.app.state.inactivity_sweep.lock

    assert closed == [lock]
