from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.cache import cache
from ..core.config import settings
from ..core.database import get_async_db
from ..core.security import Identity, verify_token
from ..services.catalog import SqlCatalog
from ..services.rate_limit import build_violation_rate_limiter
from ..services.review_service import ReviewService
from ..services.session_service import SessionLifecycleService
from ..services.state_machine import SessionScope

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Identity:
    identity = verify_token(credentials.credentials) if credentials else None

    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return identity


def get_current_admin(
    identity: Identity = Depends(get_current_identity),
) -> Identity:
    if not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="The user doesn't have enough privileges"
        )
    return identity


def session_scope(session_id: str, identity: Identity = Depends(get_current_identity)) -> SessionScope:
    return SessionScope(student_id=identity.subject_id, session_id=session_id, any_student=identity.is_admin)


def get_session_service(db: AsyncSession = Depends(get_async_db)) -> SessionLifecycleService:
    return SessionLifecycleService(
        db,
        catalog=SqlCatalog(db, cache=cache),
        rate_limiter=build_violation_rate_limiter(cache, settings.violation_rate_limit_per_minute),
    )


def get_review_service(db: AsyncSession = Depends(get_async_db)) -> ReviewService:
    return ReviewService(db)
