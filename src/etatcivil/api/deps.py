"""
FastAPI dependencies for the API.

Provides:
- Database session management (one transaction per request)
- JWT-based authentication
- Role-based authorization
- Repositories and registry services bound to the request session
"""

import logging
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from etatcivil.config import settings
from etatcivil.db.repositories import (
    ActRepository,
    PersonRepository,
    TerritoryRepository,
)
from etatcivil.registry import (
    ActCoordinator,
    BatchProcessor,
    BatchValidator,
    PersonService,
    QueryComposer,
)
from etatcivil.security.auth import (
    AuthenticationError,
    AuthorizationError,
    User as AuthUser,
    UserRole,
    require_role,
    verify_access_token,
)

logger = logging.getLogger(__name__)


# HTTP Bearer token extractor
security = HTTPBearer(auto_error=False)


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Get database session from request state.

    Commits when the request succeeds, rolls back otherwise.
    """
    async with request.app.state.db_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Type alias for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_role: Annotated[Optional[str], Header()] = None,
) -> AuthUser:
    """
    Get current authenticated user from JWT token.

    Outside production, X-User-Id / X-User-Role headers are also accepted.

    Raises:
        HTTPException: 401 if not authenticated
    """
    if credentials:
        try:
            token_payload = verify_access_token(credentials.credentials)
            return AuthUser(
                id=token_payload.sub,
                username=token_payload.sub,
                role=token_payload.role,
            )
        except AuthenticationError as e:
            logger.warning(f"JWT authentication failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

    # Development fallback: accept headers (NOT in production)
    if not settings.is_production and x_user_id:
        logger.warning(f"Using development header auth for user: {x_user_id}")
        try:
            role = UserRole(x_user_role) if x_user_role else UserRole.VIEWER
        except ValueError:
            role = UserRole.VIEWER
        return AuthUser(id=x_user_id, username=x_user_id, role=role)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": "Bearer"},
    )


# Any authenticated caller has at least the viewer role
User = Annotated[AuthUser, Depends(get_current_user)]


def _require(user: AuthUser, role: UserRole) -> AuthUser:
    try:
        require_role(user, role)
        return user
    except AuthorizationError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e),
        ) from e


async def require_officer(user: User) -> AuthUser:
    """Require at least officer role."""
    return _require(user, UserRole.OFFICER)


async def require_admin(user: User) -> AuthUser:
    """Require admin role."""
    return _require(user, UserRole.ADMIN)


# Role-checked user types
OfficerUser = Annotated[AuthUser, Depends(require_officer)]
AdminUser = Annotated[AuthUser, Depends(require_admin)]


def get_query_composer() -> QueryComposer:
    return QueryComposer(max_page_size=settings.max_page_size)


Composer = Annotated[QueryComposer, Depends(get_query_composer)]


def get_person_repo(session: DbSession, composer: Composer) -> PersonRepository:
    """Get person repository."""
    return PersonRepository(session, composer)


def get_act_repo(session: DbSession, composer: Composer) -> ActRepository:
    """Get civil act repository."""
    return ActRepository(session, composer)


def get_territory_repo(session: DbSession) -> TerritoryRepository:
    """Get territorial lookup repository."""
    return TerritoryRepository(session)


# Type aliases for repositories
PersonRepo = Annotated[PersonRepository, Depends(get_person_repo)]
ActRepo = Annotated[ActRepository, Depends(get_act_repo)]
TerritoryRepo = Annotated[TerritoryRepository, Depends(get_territory_repo)]


def get_coordinator(
    acts: ActRepo,
    persons: PersonRepo,
    territory: TerritoryRepo,
) -> ActCoordinator:
    return ActCoordinator(acts, persons, territory)


Coordinator = Annotated[ActCoordinator, Depends(get_coordinator)]


def get_batch_processor(coordinator: Coordinator) -> BatchProcessor:
    return BatchProcessor(coordinator)


def get_batch_validator(
    acts: ActRepo,
    persons: PersonRepo,
    territory: TerritoryRepo,
) -> BatchValidator:
    return BatchValidator(acts, persons, territory)


def get_person_service(persons: PersonRepo) -> PersonService:
    return PersonService(persons)


# Type aliases for services
Processor = Annotated[BatchProcessor, Depends(get_batch_processor)]
Validator = Annotated[BatchValidator, Depends(get_batch_validator)]
Persons = Annotated[PersonService, Depends(get_person_service)]
