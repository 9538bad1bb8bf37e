import pytest
from datetime import timedelta
from types import SimpleNamespace
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import NullPool
import labwatch.models  # noqa: F401  registers every table on Base.metadata
from labwatch.main import app
from labwatch.core.database import build_engine, build_session_maker, get_async_session
from labwatch.core.security import create_access_token
from labwatch.models.base import Base
from labwatch.models.organization.institute import Institute
from labwatch.models.organization.lab import Lab
from labwatch.models.auth.user import User
from labwatch.models.equipment.equipment import Equipment
from labwatch.models.shared.enums import AlertType, EquipmentStatusType, Role, Severity
from labwatch.services.alerts.alert_service import AlertService
from labwatch.services.directory.directory_service import Audience
from labwatch.services.breakdown.inactivity_sweep import InactivitySweep, SweepLock
from labwatch.services.realtime.publisher import RealtimePublisher
from labwatch.services.telemetry.telemetry_store import TelemetryStore
from labwatch.utils.background import BackgroundDispatcher
from labwatch.utils.date_time_serializer import utcnow


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite per test; NullPool so other event loops (TestClient) can connect too"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'labwatch_test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_maker(db_engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(session_factory) -> SimpleNamespace:
    """
    Two institutes; institute one has two Mechanical labs.

    LATHE-1 sits in lab one, MILL-2 in lab two, WELD-9 in the other
    institute. Every user key maps to a scope relative to LATHE-1.
    """
    async with session_factory() as session:
        main_institute = Institute(code="INS-1", name="Polytechnic One")
        other_institute = Institute(code="INS-2", name="Polytechnic Two")
        session.add_all([main_institute, other_institute])
        await session.flush()

        lab_one = Lab(name="Machine Shop", institute_id=main_institute.id, department="Mechanical")
        lab_two = Lab(name="Fitting Shop", institute_id=main_institute.id, department="Mechanical")
        lab_other = Lab(name="Welding Bay", institute_id=other_institute.id, department="Mechanical")
        session.add_all([lab_one, lab_two, lab_other])
        await session.flush()

        def scoped(lab):
            return {"institute_id": lab.institute_id, "department": lab.department, "lab_id": lab.id}

        users = {
            "policy": User(email="policy@test.io", role=Role.POLICY_MAKER),
            "manager": User(email="manager@test.io", role=Role.LAB_MANAGER,
                            institute_id=main_institute.id, department="Mechanical"),
            "trainer": User(email="trainer@test.io", role=Role.TRAINER, **scoped(lab_one)),
            "trainer_other_lab": User(email="trainer2@test.io", role=Role.TRAINER, **scoped(lab_two)),
            "manager_other": User(email="manager2@test.io", role=Role.LAB_MANAGER,
                                  institute_id=other_institute.id, department="Mechanical"),
            "manager_inactive": User(email="gone@test.io", role=Role.LAB_MANAGER, is_active=False,
                                     institute_id=main_institute.id, department="Mechanical"),
        }
        session.add_all(users.values())

        equipment = {
            "LATHE-1": Equipment(equipment_id="LATHE-1", name="CNC Lathe", **scoped(lab_one)),
            "MILL-2": Equipment(equipment_id="MILL-2", name="Milling Machine", **scoped(lab_two)),
            "WELD-9": Equipment(equipment_id="WELD-9", name="MIG Welder", **scoped(lab_other)),
        }
        session.add_all(equipment.values())
        await session.commit()

    return SimpleNamespace(
        users=users,
        user_ids={key: user.id for key, user in users.items()},
        equipment=equipment,
    )


@pytest.fixture
def token_for(seeded):
    def _token(user_key: str) -> str:
        return create_access_token(seeded.user_ids[user_key])
    return _token


@pytest.fixture
def auth_headers(token_for):
    """Bearer headers for one of the seeded users"""
    def _headers(user_key: str) -> dict:
        return {"Authorization": f"Bearer {token_for(user_key)}"}
    return _headers


@pytest.fixture
def set_last_used(session_factory, seeded):
    """Store a status row for equipment that was last used ``days`` ago"""
    async def _set(external_id: str, days: int, status: EquipmentStatusType = EquipmentStatusType.IDLE):
        async with session_factory() as session:
            await TelemetryStore(session).upsert_status(
                seeded.equipment[external_id].id,
                {"status": status},
                used_at=utcnow() - timedelta(days=days),
            )
            await session.commit()
    return _set


@pytest.fixture
def publisher():
    return RealtimePublisher()


@pytest.fixture
def dispatcher():
    return BackgroundDispatcher()


@pytest.fixture
def inactivity_sweep(session_factory, publisher):
    return InactivitySweep(session_factory, publisher=publisher, lock=SweepLock())


@pytest.fixture
async def client(session_factory, seeded, publisher, dispatcher, inactivity_sweep) -> AsyncGenerator[AsyncClient, None]:
    """Create test client"""
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_db
    app.state.session_factory = session_factory
    app.state.publisher = publisher
    app.state.dispatcher = dispatcher
    app.state.inactivity_sweep = inactivity_sweep

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    await dispatcher.shutdown()
    app.dependency_overrides.clear()


@pytest.fixture
def make_alert(session_factory, seeded):
    """Raise an alert through the fan-out path and return its id"""
    async def _make(external_id: str = "LATHE-1", alert_type: AlertType = AlertType.BREAKDOWN_CHECK,
                    severity: Severity = Severity.MEDIUM, audience: Audience = Audience.LAB_MANAGERS) -> int:
        async with session_factory() as session:
            equipment = await session.get(Equipment, seeded.equipment[external_id].id) if external_id else None
            alert = await AlertService(session).raise_alert(
                alert_type=alert_type,
                severity=severity,
                title="Equipment Breakdown Check",
                message=f"Check on {external_id or 'system'}",
                equipment=equipment,
                audience=audience,
            )
            return alert.id
    return _make
