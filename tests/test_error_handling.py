import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError

from fieldtracker.core.error_handling import handle_endpoint_errors, license_error


def failing_endpoint(error: Exception):
    @handle_endpoint_errors(operation_name="failing")
    async def endpoint():
        raise error
    return endpoint


@pytest.mark.asyncio
async def test_http_exceptions_pass_through():
    with pytest.raises(HTTPException) as exc_info:
        await failing_endpoint(HTTPException(status_code=404, detail="Missing"))()
    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "Missing"


@pytest.mark.asyncio
async def test_value_error_becomes_bad_request():
    with pytest.raises(HTTPException) as exc_info:
        await failing_endpoint(ValueError("seats must be positive"))()
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Invalid input: seats must be positive"


@pytest.mark.asyncio
async def test_integrity_error_becomes_conflict():
    error = IntegrityError("INSERT INTO time_entries", {}, Exception("UNIQUE constraint failed"))
    with pytest.raises(HTTPException) as exc_info:
        await failing_endpoint(error)()
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_unexpected_error_becomes_server_error():
    with pytest.raises(HTTPException) as exc_info:
        await failing_endpoint(RuntimeError("boom"))()
    assert exc_info.value.status_code == 500
    # Outside production the cause is included for debugging
    assert "RuntimeError: boom" in exc_info.value.detail


@pytest.mark.asyncio
async def test_successful_endpoint_returns_value():
    @handle_endpoint_errors()
    async def endpoint(value):
        return value * 2

    assert await endpoint(21) == 42


def test_license_error_shape():
    error = license_error(["License has expired"])
    assert error.status_code == 403
    assert error.detail == {
        "error": "LICENSE_INVALID",
        "message": "Invalid or expired license",
        "errors": ["License has expired"],
    }
