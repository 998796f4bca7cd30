from datetime import datetime, timedelta, timezone
from typing import Optional
import hmac
import logging

from jose import JWTError, jwt
from passlib.context import CryptContext
from fieldtracker.core.config import settings

logger = logging.getLogger(__name__)

pin_context = CryptContext(schemes=["argon2"], deprecated="auto")


def verify_pin(plain_pin: str, hashed_pin: str) -> bool:
    """Verify a PIN against its hash."""
    return pin_context.verify(plain_pin, hashed_pin)


def get_pin_hash(pin: str) -> str:
    """Hash a PIN."""
    return pin_context.hash(pin)


def verify_admin_password(password: str) -> bool:
    """Constant-time comparison against the configured admin password."""
    return hmac.compare_digest(password.encode("utf-8"), settings.ADMIN_PASSWORD.encode("utf-8"))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_worker_token(worker_id: int, device_id: str) -> str:
    """Create an access token for a worker session on a specific device."""
    return create_access_token({
        "sub": f"worker:{worker_id}",
        "role": "worker",
        "worker_id": worker_id,
        "device_id": device_id,
    })


def create_admin_token() -> str:
    """Create an access token for the administrator."""
    return create_access_token({"sub": "admin", "role": "admin"})


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT token."""
    if not token or not isinstance(token, str) or not token.strip():
        return None

    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.debug(f"JWT decode error: {str(e)}")
        return None
    except Exception as e:
        # Malformed tokens can fail before signature checking (base64 errors)
        logger.debug(f"Unexpected token decode error: {str(e)}")
        return None
