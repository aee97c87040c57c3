from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt

from .config import settings

STUDENT_ROLE = "student"
ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    """Caller resolved by the authenticator before any core call."""
    subject_id: str
    role: str = STUDENT_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(subject_id: str, role: str = STUDENT_ROLE, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {"sub": subject_id, "role": role, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str) -> Optional[Identity]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.PyJWTError:
        return None

    subject_id = payload.get("sub")
    if subject_id is None:
        return None
    return Identity(subject_id=str(subject_id), role=payload.get("role", STUDENT_ROLE))
