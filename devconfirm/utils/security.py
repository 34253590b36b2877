"""Security utilities: JWT tokens, device secrets, challenges, HMAC signatures."""

import hashlib
import hmac
import re
import secrets
from datetime import datetime, timedelta, timezone

import jwt

from devconfirm.config import settings
from devconfirm.errors import InvalidSecretFormat

SECRET_BYTES = 32
CHALLENGE_BYTES = 32

_HEX64 = re.compile(rf"[0-9a-fA-F]{{{SECRET_BYTES * 2}}}")


# --- JWT Tokens ---

def create_access_token(user_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": user_id,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


# --- Device Secrets ---

def is_hex64(value: str) -> bool:
    return isinstance(value, str) and bool(_HEX64.fullmatch(value))


def parse_shared_secret(secret_hex: str) -> bytes:
    """Decode a 64-char hex secret into its 32 raw bytes.

    Either case is accepted; the value is lowercased before decoding.
    """
    if not is_hex64(secret_hex):
        raise InvalidSecretFormat("Device secret must be 64 hex characters (32 bytes)")
    return bytes.fromhex(secret_hex.lower())


# --- Challenges ---

def generate_challenge() -> bytes:
    return secrets.token_bytes(CHALLENGE_BYTES)


def new_confirmation_id() -> str:
    """Opaque confirmation identifier with 192 bits of entropy."""
    return secrets.token_urlsafe(24)


# --- Signatures ---

def compute_signature(secret: bytes, challenge: bytes) -> str:
    """HMAC-SHA256 over the challenge as the device receives it (lowercase hex text)."""
    message = challenge.hex().encode("ascii")
    return hmac.new(secret, message, hashlib.sha256).hexdigest()


def signatures_match(expected_hex: str, provided_hex: str) -> bool:
    """Constant-time comparison of two hex signatures, decoded to bytes first."""
    try:
        expected = bytes.fromhex(expected_hex)
        provided = bytes.fromhex(provided_hex.strip().lower())
    except (ValueError, AttributeError):
        return False
    return hmac.compare_digest(expected, provided)
