import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldtracker.licensing import generate_key_pair
from fieldtracker.models import License, Worker
from fieldtracker.services.license_service import install_license

from conftest import DEVICE_ID, WORKER_PIN, auth_headers, make_license


def _upload(content: str):
    return {"file": ("fieldtracker.license", content.encode("utf-8"), "application/json")}


@pytest.mark.asyncio
async def test_status_without_license(client: AsyncClient):
    response = await client.get("/api/v1/license/status")
    assert response.status_code == 200
    data = response.json()
    assert data["installed"] is False
    assert data["isValid"] is False
    assert data["errors"] == ["No license installed"]
    assert data["license"] is None


@pytest.mark.asyncio
async def test_admin_uploads_license(client: AsyncClient, admin_token: str, test_worker: Worker):
    response = await client.post(
        "/api/v1/license",
        files=_upload(make_license(seats_max=10, license_id="ACME-001")),
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 200, response.text
    data = response.json()
    assert data["installed"] is True
    assert data["isValid"] is True
    assert data["seatsUsed"] == 1
    assert data["seatsMax"] == 10
    assert data["license"]["licenseId"] == "ACME-001"
    assert data["license"]["uploadedBy"] == "admin"


@pytest.mark.asyncio
async def test_new_license_replaces_active_one(
    client: AsyncClient, admin_token: str, installed_license, session_factory
):
    response = await client.post(
        "/api/v1/license",
        files=_upload(make_license(license_id="RENEWED-002")),
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["license"]["licenseId"] == "RENEWED-002"

    async with session_factory() as session:
        rows = (await session.execute(select(License).order_by(License.id))).scalars().all()
    assert [(r.license_id, r.is_active) for r in rows] == [
        ("TEST-LICENSE-001", False),
        ("RENEWED-002", True),
    ]


@pytest.mark.asyncio
async def test_upload_rejects_foreign_signature(client: AsyncClient, admin_token: str):
    _, other_secret = generate_key_pair()
    response = await client.post(
        "/api/v1/license",
        files=_upload(make_license(secret_key=other_secret)),
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid license signature"

    status = (await client.get("/api/v1/license/status")).json()
    assert status["installed"] is False


@pytest.mark.asyncio
async def test_upload_rejects_malformed_file(client: AsyncClient, admin_token: str):
    response = await client.post(
        "/api/v1/license",
        files=_upload("definitely not a license"),
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Failed to parse license file")


@pytest.mark.asyncio
async def test_workers_cannot_upload_licenses(client: AsyncClient, worker_token: str):
    response = await client.post(
        "/api/v1/license",
        files=_upload(make_license()),
        headers=auth_headers(worker_token),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_expired_license_blocks_sync(client: AsyncClient, worker_token: str, db: AsyncSession):
    # Logged in while valid; the license is re-checked on every request
    await install_license(db, make_license(valid_for_days=-1).encode("utf-8"))

    response = await client.get(
        "/api/v1/sync/pull", params={"deviceId": DEVICE_ID}, headers=auth_headers(worker_token)
    )
    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["error"] == "LICENSE_INVALID"
    assert "License has expired" in detail["errors"]

    status = (await client.get("/api/v1/license/status")).json()
    assert status["isValid"] is False
    assert status["daysUntilExpiry"] <= 0


@pytest.mark.asyncio
async def test_tampered_stored_license_stops_validating(
    client: AsyncClient, installed_license, test_worker: Worker, db: AsyncSession
):
    row = await db.get(License, installed_license.id)
    row.document = row.document.replace('"seatsMax": 25', '"seatsMax": 500')
    await db.commit()

    response = await client.post(
        "/api/v1/auth/worker/login",
        json={"employeeId": "W001", "pin": WORKER_PIN, "deviceId": DEVICE_ID},
    )
    assert response.status_code == 403
    assert response.json()["detail"]["errors"] == ["Invalid license signature"]
