"""
License validation using Ed25519 detached signatures.

Everything here works offline: a license is trusted because its signature
verifies against the issuer's public key, not because a server said so.
"""
import base64
import json
import logging
import math
import re
from datetime import datetime, timedelta
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from fieldtracker.sync.timeutils import ensure_utc, parse_datetime, to_iso, utcnow

logger = logging.getLogger(__name__)

LICENSE_FILE_VERSION = "1.0"
LICENSE_FILE_FORMAT = "field-tracker-license"
SEAT_WARNING_RATIO = 0.9
EXPIRY_WARNING_DAYS = 30

# Exactly what to_iso emits; signed documents carry no other form
TIMESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z")


class LicenseFormatError(ValueError):
    """Raised when a license document cannot be parsed."""


class LicenseData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    license_id: str = Field(..., min_length=1, alias="licenseId")
    seats_max: int = Field(..., gt=0, alias="seatsMax")
    expiry_updates: Optional[datetime] = Field(None, alias="expiryUpdates")
    issued_at: datetime = Field(..., alias="issuedAt")
    issuer: str = Field(..., min_length=1)

    @field_validator("expiry_updates", "issued_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v):
        if v is not None and not isinstance(v, (str, datetime)):
            raise ValueError("must be an ISO-8601 string")
        if isinstance(v, str) and not TIMESTAMP_PATTERN.fullmatch(v):
            raise ValueError("must be formatted as YYYY-MM-DDTHH:MM:SS.mmmZ")
        return parse_datetime(v)


class SignedLicense(BaseModel):
    data: LicenseData
    signature: str = Field(..., min_length=1)


class LicenseStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(..., alias="isValid")
    seats_used: int = Field(..., alias="seatsUsed")
    seats_max: int = Field(..., alias="seatsMax")
    days_until_expiry: Optional[int] = Field(None, alias="daysUntilExpiry")
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


def generate_key_pair() -> tuple[str, str]:
    """
    Generate an issuer key pair.

    Returns:
        (public_key, secret_key), both base64 encoded raw keys
    """
    private_key = ed25519.Ed25519PrivateKey.generate()
    secret = private_key.private_bytes(
        serialization.Encoding.Raw,
        serialization.PrivateFormat.Raw,
        serialization.NoEncryption(),
    )
    public = private_key.public_key().public_bytes(
        serialization.Encoding.Raw,
        serialization.PublicFormat.Raw,
    )
    return base64.b64encode(public).decode("ascii"), base64.b64encode(secret).decode("ascii")


def _load_private_key(secret_key: str) -> ed25519.Ed25519PrivateKey:
    raw = base64.b64decode(secret_key, validate=True)
    # 64-byte secret keys are seed || public key; the seed is all we need
    if len(raw) == 64:
        raw = raw[:32]
    return ed25519.Ed25519PrivateKey.from_private_bytes(raw)


def _load_public_key(public_key: str) -> ed25519.Ed25519PublicKey:
    return ed25519.Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key, validate=True))


def canonical_payload(data: LicenseData) -> bytes:
    """
    Serialize license fields in a fixed order with ISO-8601 dates.

    The verifier rebuilds exactly these bytes, so field order, separators
    and date formatting must never change. ``expiryUpdates`` is omitted
    when the license never expires.
    """
    fields = {
        "licenseId": data.license_id,
        "seatsMax": data.seats_max,
    }
    if data.expiry_updates is not None:
        fields["expiryUpdates"] = to_iso(data.expiry_updates)
    fields["issuedAt"] = to_iso(data.issued_at)
    fields["issuer"] = data.issuer
    return json.dumps(fields, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_license(data: LicenseData, secret_key: str) -> SignedLicense:
    """Sign license data with the issuer's secret key."""
    data = LicenseData.model_validate(data)
    signature = _load_private_key(secret_key).sign(canonical_payload(data))
    return SignedLicense(data=data, signature=base64.b64encode(signature).decode("ascii"))


def verify_license(signed_license, public_key: str) -> bool:
    """
    Check the detached signature of a license.

    Never raises: malformed data, bad base64, wrong key sizes and invalid
    signatures all come back as False.
    """
    try:
        signed = SignedLicense.model_validate(signed_license)
        signature = base64.b64decode(signed.signature, validate=True)
        _load_public_key(public_key).verify(signature, canonical_payload(signed.data))
        return True
    except InvalidSignature:
        return False
    except (ValidationError, ValueError, TypeError) as e:
        logger.debug(f"License verification failed: {e}")
        return False
    except Exception as e:
        # Anything else a hostile document can trigger still means "not valid"
        logger.debug(f"Unexpected license verification error: {e}")
        return False


def check_license_status(
    signed_license,
    public_key: str,
    current_seats_used: int,
    now: Optional[datetime] = None,
) -> LicenseStatus:
    """
    Evaluate a license: signature first, then seats, expiry and issue date.

    An invalid signature short-circuits everything else. The remaining
    checks are independent and may each add warnings or errors; only
    errors affect validity.
    """
    now = ensure_utc(now) or utcnow()

    if not verify_license(signed_license, public_key):
        return LicenseStatus(
            is_valid=False,
            seats_used=current_seats_used,
            seats_max=0,
            days_until_expiry=None,
            errors=["Invalid license signature"],
        )

    data = SignedLicense.model_validate(signed_license).data
    warnings = []
    errors = []

    if current_seats_used > data.seats_max:
        errors.append(f"Seat limit exceeded: {current_seats_used}/{data.seats_max}")
    elif data.seats_max * SEAT_WARNING_RATIO <= current_seats_used < data.seats_max:
        warnings.append(f"Approaching seat limit: {current_seats_used}/{data.seats_max}")

    days_until_expiry = None
    if data.expiry_updates is not None:
        remaining = ensure_utc(data.expiry_updates) - now
        days_until_expiry = math.ceil(remaining / timedelta(days=1))
        if days_until_expiry <= 0:
            errors.append("License has expired")
        elif days_until_expiry <= EXPIRY_WARNING_DAYS:
            warnings.append(f"License expires in {days_until_expiry} days")

    if ensure_utc(data.issued_at) > now:
        errors.append("License issue date is in the future")

    return LicenseStatus(
        is_valid=not errors,
        seats_used=current_seats_used,
        seats_max=data.seats_max,
        days_until_expiry=days_until_expiry,
        warnings=warnings,
        errors=errors,
    )


def parse_license_file(content) -> SignedLicense:
    """Parse the contents of a ``.license`` file."""
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise LicenseFormatError(f"Failed to parse license file: {e}") from e
    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        raise LicenseFormatError(f"Failed to parse license file: {e}") from e

    if not isinstance(document, dict) or "data" not in document or not document.get("signature"):
        raise LicenseFormatError("Failed to parse license file: Invalid license file format")
    fmt = document.get("format")
    if fmt is not None and fmt != LICENSE_FILE_FORMAT:
        raise LicenseFormatError(f"Failed to parse license file: unsupported format '{fmt}'")

    try:
        return SignedLicense.model_validate({"data": document["data"], "signature": document["signature"]})
    except ValidationError as e:
        raise LicenseFormatError(f"Failed to parse license file: {e}") from e


def generate_license_file(signed_license: SignedLicense) -> str:
    """Render a signed license as ``.license`` file content."""
    data = {
        "licenseId": signed_license.data.license_id,
        "seatsMax": signed_license.data.seats_max,
    }
    if signed_license.data.expiry_updates is not None:
        data["expiryUpdates"] = to_iso(signed_license.data.expiry_updates)
    data["issuedAt"] = to_iso(signed_license.data.issued_at)
    data["issuer"] = signed_license.data.issuer

    return json.dumps(
        {
            "data": data,
            "signature": signed_license.signature,
            "version": LICENSE_FILE_VERSION,
            "format": LICENSE_FILE_FORMAT,
        },
        indent=2,
    )


def create_sample_license(
    license_id: str = "DEV-LICENSE-001",
    seats_max: int = 25,
    valid_for_days: Optional[int] = 365,
) -> tuple[SignedLicense, str, str]:
    """
    Create a freshly keyed license for development and tests.

    Returns:
        (signed_license, public_key, secret_key)
    """
    public_key, secret_key = generate_key_pair()
    now = utcnow()
    data = LicenseData(
        license_id=license_id,
        seats_max=seats_max,
        expiry_updates=now + timedelta(days=valid_for_days) if valid_for_days is not None else None,
        issued_at=now,
        issuer="Field Tracker Development",
    )
    return sign_license(data, secret_key), public_key, secret_key
