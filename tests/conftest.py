import os
import tempfile
from pathlib import Path

from fieldtracker.licensing import generate_key_pair

# Settings are read at import time, so the environment has to be in place
# before anything imports fieldtracker.core.config.
_TEST_DIR = Path(tempfile.mkdtemp(prefix="fieldtracker-tests-"))
LICENSE_PUBLIC_KEY, LICENSE_SECRET_KEY = generate_key_pair()
ADMIN_PASSWORD = "admin-secret"

os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'app.db'}"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt-signing")
os.environ["ADMIN_PASSWORD"] = ADMIN_PASSWORD
os.environ["LICENSE_PUBLIC_KEY"] = LICENSE_PUBLIC_KEY
os.environ["LOG_DIR"] = str(_TEST_DIR / "logs")
os.environ["UPLOAD_DIR"] = str(_TEST_DIR / "uploads")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from datetime import timedelta
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fieldtracker.core.database import Base, get_db
from fieldtracker.core.security import get_pin_hash
from fieldtracker.licensing import LicenseData, generate_license_file, sign_license
from fieldtracker.main import app
from fieldtracker.models import BreakType, Job, SystemSetting, Worker
from fieldtracker.services.license_service import install_license
from fieldtracker.sync.timeutils import to_iso, utcnow

WORKER_PIN = "1234"
DEVICE_ID = "device-test-1"


def make_license(
    seats_max: int = 25,
    valid_for_days: Optional[int] = 365,
    issued_at=None,
    secret_key: str = LICENSE_SECRET_KEY,
    license_id: str = "TEST-LICENSE-001",
) -> str:
    """A signed ``.license`` document for the test issuer key."""
    now = utcnow()
    data = LicenseData(
        license_id=license_id,
        seats_max=seats_max,
        expiry_updates=now + timedelta(days=valid_for_days) if valid_for_days is not None else None,
        issued_at=issued_at or now - timedelta(days=1),
        issuer="Test Issuer",
    )
    return generate_license_file(sign_license(data, secret_key))


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'server.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncClient:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def installed_license(db: AsyncSession):
    """A valid license installed on the server."""
    return await install_license(db, make_license().encode("utf-8"), uploaded_by="admin")


@pytest.fixture
async def test_worker(db: AsyncSession) -> Worker:
    worker = Worker(
        employee_id="W001",
        name="Test Worker",
        pin_hash=get_pin_hash(WORKER_PIN),
        is_active=True,
    )
    db.add(worker)
    await db.commit()
    await db.refresh(worker)
    return worker


@pytest.fixture
async def test_job(db: AsyncSession) -> Job:
    job = Job(job_code="J-100", name="Warehouse Renovation", tags=["interior"], is_active=True)
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


@pytest.fixture
async def test_break_type(db: AsyncSession) -> BreakType:
    break_type = BreakType(name="Lunch", is_paid=False, default_minutes=30, is_active=True)
    db.add(break_type)
    db.add(SystemSetting(key="overtime_threshold_hours", value=8))
    await db.commit()
    await db.refresh(break_type)
    return break_type


@pytest.fixture
async def worker_token(client: AsyncClient, installed_license, test_worker: Worker) -> str:
    response = await client.post(
        "/api/v1/auth/worker/login",
        json={"employeeId": test_worker.employee_id, "pin": WORKER_PIN, "deviceId": DEVICE_ID},
    )
    assert response.status_code == 200, response.text
    return response.json()["accessToken"]


@pytest.fixture
async def other_worker(db: AsyncSession) -> Worker:
    worker = Worker(
        employee_id="W002",
        name="Second Worker",
        pin_hash=get_pin_hash(WORKER_PIN),
        is_active=True,
    )
    db.add(worker)
    await db.commit()
    await db.refresh(worker)
    return worker


@pytest.fixture
async def other_worker_token(client: AsyncClient, installed_license, other_worker: Worker) -> str:
    response = await client.post(
        "/api/v1/auth/worker/login",
        json={"employeeId": other_worker.employee_id, "pin": WORKER_PIN, "deviceId": "device-test-2"},
    )
    assert response.status_code == 200, response.text
    return response.json()["accessToken"]


@pytest.fixture
async def admin_token(client: AsyncClient) -> str:
    response = await client.post("/api/v1/auth/admin/login", json={"password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return response.json()["accessToken"]


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# Yesterday morning: early enough that a full day of entries never lands in the future
BASE = (utcnow() - timedelta(days=1)).replace(hour=8, minute=0, second=0, microsecond=0)


def time_entry_payload(worker: Worker, job: Job, guid=None, start_hour=0, hours=4, **overrides) -> dict:
    """A pushed time entry starting ``start_hour`` hours after ``BASE``."""
    start = BASE + timedelta(hours=start_hour)
    payload = {
        "offlineGuid": str(guid or uuid.uuid4()),
        "workerId": worker.id,
        "jobId": job.id,
        "startTime": to_iso(start),
        "endTime": to_iso(start + timedelta(hours=hours)) if hours is not None else None,
        "notes": None,
        "updatedAt": to_iso(start + timedelta(hours=hours or 0)),
    }
    payload.update(overrides)
    return payload


def push_body(time_entries=(), break_entries=(), photos=(), **extra) -> dict:
    return {
        "timeEntries": list(time_entries),
        "breakEntries": list(break_entries),
        "photos": list(photos),
        "deviceId": DEVICE_ID,
        **extra,
    }


async def push(client: AsyncClient, token: str, **kwargs) -> dict:
    response = await client.post("/api/v1/sync/push", json=push_body(**kwargs), headers=auth_headers(token))
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
async def store():
    from fieldtracker.client.store import OfflineStore

    store = OfflineStore(":memory:")
    await store.open()
    yield store
    await store.close()
