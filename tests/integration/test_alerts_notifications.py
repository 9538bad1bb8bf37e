import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from labwatch.core.config import settings
from labwatch.core.exceptions import UnavailableError
from labwatch.models.alerts.alert import Alert
from labwatch.models.alerts.notification import Notification
from labwatch.models.equipment.equipment import Equipment
from labwatch.services.alerts.alert_service import AlertService
from labwatch.models.shared.enums import AlertType, Severity
from labwatch.services.directory.directory_service import Audience


@pytest.mark.asyncio
class TestAlerts:
    """Alert listing and resolution"""

    async def test_resolve_is_idempotent(self, client: AsyncClient, auth_headers, make_alert, seeded):
        alert_id = await make_alert()

        first = await client.put(
            f"/api/v1/alerts/{alert_id}/resolve", json={"notes": "Belt replaced"}, headers=auth_headers("manager")
        )
        second = await client.put(f"/api/v1/alerts/{alert_id}/resolve", headers=auth_headers("policy"))

        assert first.status_code == status.HTTP_200_OK
        assert second.status_code == status.HTTP_200_OK
        assert first.json()["is_resolved"] is True
        assert second.json()["resolved_by"] == seeded.user_ids["manager"]
        assert second.json()["resolution_notes"] == "Belt replaced"
        assert second.json()["resolved_at"] == first.json()["resolved_at"]

    async def test_resolve_outside_scope_is_forbidden(self, client: AsyncClient, auth_headers, make_alert):
        alert_id = await make_alert("LATHE-1")
        response = await client.put(f"/api/v1/alerts/{alert_id}/resolve", headers=auth_headers("manager_other"))
        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_system_alerts_are_policy_only(self, client: AsyncClient, auth_headers, make_alert):
        alert_id = await make_alert(None, alert_type=AlertType.HIGH_ENERGY_CONSUMPTION,
                                    audience=Audience.POLICY_MAKERS)

        manager = await client.put(f"/api/v1/alerts/{alert_id}/resolve", headers=auth_headers("manager"))
        policy = await client.put(f"/api/v1/alerts/{alert_id}/resolve", headers=auth_headers("policy"))

        assert manager.status_code == status.HTTP_403_FORBIDDEN
        assert policy.status_code == status.HTTP_200_OK
        assert policy.json()["equipment_id"] is None

    async def test_unknown_alert(self, client: AsyncClient, auth_headers):
        response = await client.put("/api/v1/alerts/999/resolve", headers=auth_headers("policy"))
        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_list_is_scoped_and_filtered(self, client: AsyncClient, auth_headers, make_alert):
        lathe_alert = await make_alert("LATHE-1", severity=Severity.HIGH)
        await make_alert("WELD-9")

        policy = await client.get("/api/v1/alerts/", headers=auth_headers("policy"))
        manager = await client.get("/api/v1/alerts/", headers=auth_headers("manager"))
        high_only = await client.get("/api/v1/alerts/?severity=HIGH", headers=auth_headers("policy"))

        assert policy.json()["count"] == 2
        assert [a["id"] for a in manager.json()["data"]] == [lathe_alert]
        assert manager.json()["data"][0]["equipment_id"] == "LATHE-1"
        assert [a["id"] for a in high_only.json()["data"]] == [lathe_alert]

    async def test_lab_manager_audience_excludes_others(self, client: AsyncClient, auth_headers, make_alert):
        await make_alert("LATHE-1", audience=Audience.LAB_MANAGERS)

        manager = await client.get("/api/v1/notifications/", headers=auth_headers("manager"))
        policy = await client.get("/api/v1/notifications/", headers=auth_headers("policy"))
        trainer = await client.get("/api/v1/notifications/", headers=auth_headers("trainer"))

        assert manager.json()["count"] == 1
        assert policy.json()["count"] == 0
        assert trainer.json()["count"] == 0


@pytest.mark.asyncio
class TestNotifications:
    """A user's own inbox"""

    async def test_inbox_and_read_flow(self, client: AsyncClient, auth_headers, make_alert):
        first_alert = await make_alert("LATHE-1")
        await make_alert("MILL-2")

        inbox = await client.get("/api/v1/notifications/", headers=auth_headers("manager"))
        assert inbox.status_code == status.HTTP_200_OK
        assert inbox.json()["count"] == 2
        assert inbox.json()["unread_count"] == 2

        notification = next(n for n in inbox.json()["data"] if n["alert_id"] == first_alert)
        read = await client.put(f"/api/v1/notifications/{notification['id']}/read", headers=auth_headers("manager"))
        assert read.status_code == status.HTTP_200_OK
        assert read.json()["is_read"] is True

        unread = await client.get("/api/v1/notifications/unread-count", headers=auth_headers("manager"))
        assert unread.json() == {"unread_count": 1}

        read_all = await client.put("/api/v1/notifications/read-all", headers=auth_headers("manager"))
        assert read_all.json()["updated"] == 1

        unread_only = await client.get("/api/v1/notifications/?is_read=false", headers=auth_headers("manager"))
        assert unread_only.json()["count"] == 0

    async def test_cannot_read_someone_elses_notification(self, client: AsyncClient, auth_headers, make_alert):
        await make_alert("LATHE-1")
        inbox = await client.get("/api/v1/notifications/", headers=auth_headers("manager"))
        notification_id = inbox.json()["data"][0]["id"]

        response = await client.put(f"/api/v1/notifications/{notification_id}/read", headers=auth_headers("policy"))
        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_inactive_users_are_not_notified(self, client: AsyncClient, auth_headers, make_alert):
        await make_alert("LATHE-1")
        response = await client.get("/api/v1/notifications/", headers=auth_headers("manager_inactive"))
        # The account itself is rejected too
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
class TestSuppressionWindow:

    async def raise_temperature_alert(self, session_factory, seeded):
        async with session_factory() as session:
            equipment = await session.get(Equipment, seeded.equipment["LATHE-1"].id)
            return await AlertService(session).raise_alert(
                alert_type=AlertType.HIGH_TEMPERATURE,
                severity=Severity.CRITICAL,
                title="High Temperature Alert",
                message="CNC Lathe temperature is 105°C",
                equipment=equipment,
            )

    async def test_duplicates_fan_out_when_window_is_off(self, session_factory, seeded):
        first = await self.raise_temperature_alert(session_factory, seeded)
        second = await self.raise_temperature_alert(session_factory, seeded)
        assert first.id != second.id

    async def test_open_duplicate_inside_window_is_suppressed(self, session_factory, seeded, monkeypatch):
        monkeypatch.setattr(settings, "ALERT_SUPPRESSION_WINDOW_SECONDS", 300)

        first = await self.raise_temperature_alert(session_factory, seeded)
        second = await self.raise_temperature_alert(session_factory, seeded)

        assert first is not None
        assert second is None
        async with session_factory() as session:
            alerts = (await session.execute(select(func.count(Alert.id)))).scalar()
            notifications = (await session.execute(select(func.count(Notification.id)))).scalar()
        assert alerts == 1
        # policy maker, lab manager and trainer of the lab
        assert notifications == 3


@pytest.mark.asyncio
class TestAtomicAlertWrite:
    """The alert and its notifications commit together or not at all"""

    @pytest.fixture(autouse=True)
    def no_backoff(self, monkeypatch):
        monkeypatch.setattr(settings, "ALERT_WRITE_RETRY_DELAY_SECONDS", 0)

    def failing_commit(self, session, failures: int):
        real_commit = session.commit
        calls = []

        async def commit():
            calls.append(1)
            if len(calls) <= failures:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            await real_commit()

        session.commit = commit
        return calls

    async def raise_check(self, session, seeded):
        equipment = await session.get(Equipment, seeded.equipment["LATHE-1"].id)
        return await AlertService(session).raise_alert(
            alert_type=AlertType.HIGH_TEMPERATURE,
            severity=Severity.CRITICAL,
            title="High Temperature Alert",
            message="CNC Lathe temperature is 105°C",
            equipment=equipment,
        )

    async def counts(self, session_factory):
        async with session_factory() as session:
            alerts = (await session.execute(select(func.count(Alert.id)))).scalar()
            notifications = (await session.execute(select(func.count(Notification.id)))).scalar()
        return alerts, notifications

    async def test_transient_failure_retries_the_whole_write(self, session_factory, seeded):
        async with session_factory() as session:
            calls = self.failing_commit(session, failures=1)
            alert = await self.raise_check(session, seeded)

        assert alert is not None
        assert len(calls) == 2
        assert await self.counts(session_factory) == (1, 3)

    async def test_exhausted_retries_surface_unavailable_and_write_nothing(self, session_factory, seeded):
        async with session_factory() as session:
            calls = self.failing_commit(session, failures=10)
            with pytest.raises(UnavailableError):
                await self.raise_check(session, seeded)

        assert len(calls) == settings.ALERT_WRITE_RETRIES + 1
        assert await self.counts(session_factory) == (0, 0)
