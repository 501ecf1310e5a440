"""JWT decoding and the request identity built from it.

Access tokens are minted by the identity service. Claims we rely on:
  - sub:         user ID
  - role:        UserRole string (SUPER_ADMIN, SCHOOL_ADMIN, ...)
  - school_id:   current school context (absent for platform users)
  - profile_id:  SchoolAdmin / teacher profile id in that school
  - type:        "access" | "refresh"
  - exp:         expiry timestamp
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from edugate.config import settings

ALGORITHM = settings.jwt_algorithm

PLATFORM_ROLES = frozenset({"SUPER_ADMIN"})


@dataclass(frozen=True)
class Identity:
    """Who is calling, as asserted by a verified access token."""

    user_id: str
    role: str
    school_id: str | None = None
    profile_id: str | None = None

    @property
    def is_platform(self) -> bool:
        return self.role in PLATFORM_ROLES


def create_access_token(
    user_id: str,
    role: str,
    school_id: str | None = None,
    profile_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Mint an access token. Used by tests and local tooling."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    payload = {
        "sub": user_id,
        "role": role,
        "type": "access",
        "exp": expire,
    }
    if school_id:
        payload["school_id"] = school_id
    if profile_id:
        payload["profile_id"] = profile_id
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}


def identity_from_claims(payload: dict) -> Identity | None:
    """Build an Identity from decoded access-token claims, or None."""
    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or not role or payload.get("type") != "access":
        return None
    return Identity(
        user_id=user_id,
        role=role,
        school_id=payload.get("school_id"),
        profile_id=payload.get("profile_id"),
    )
