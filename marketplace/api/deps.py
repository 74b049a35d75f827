"""API dependency injection.

Provides FastAPI dependencies for the session factory, the caller's
identity and the core services used across API endpoints.

Identity is established upstream: the gateway verifies the token and
forwards the user id in the ``X-User-Id`` header.
"""

import uuid
from collections.abc import Callable, Coroutine
from typing import Annotated, Any

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.core.config import Settings, get_settings
from marketplace.core.exceptions import AuthenticationError, ForbiddenError
from marketplace.db.session import get_async_session_maker
from marketplace.db.unit_of_work import unit_of_work
from marketplace.models.user import User, UserRole
from marketplace.services.dispute_service import DisputeResolver
from marketplace.services.purchase_service import PurchaseOrchestrator


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Dependency that provides the process-wide session factory.

    Endpoints open their own unit of work from it rather than sharing a
    request-scoped session.
    """
    return get_async_session_maker()


SessionMaker = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_maker)]
AppSettings = Annotated[Settings, Depends(get_settings)]


async def get_current_user(
    session_maker: SessionMaker,
    x_user_id: Annotated[uuid.UUID | None, Header()] = None,
) -> User:
    if x_user_id is None:
        raise AuthenticationError("Missing X-User-Id header")
    async with unit_of_work(session_maker) as session:
        user = await session.get(User, x_user_id)
    if user is None or not user.is_active:
        raise AuthenticationError(f"Unknown or inactive user {x_user_id}")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_roles(*roles: UserRole) -> Callable[..., Coroutine[Any, Any, User]]:
    """Dependency factory restricting an endpoint to the given roles.

    Usage:
        @router.post("/{dispute_id}/assign")
        async def assign(user: User = Depends(require_roles(UserRole.CONCILIATOR))):
            ...
    """
    allowed = frozenset(roles)

    async def check_role(current_user: CurrentUser) -> User:
        if UserRole(current_user.role) not in allowed:
            raise ForbiddenError(
                f"Role {UserRole(current_user.role).value} may not perform this action"
            )
        return current_user

    return check_role


Reviewer = Annotated[User, Depends(require_roles(UserRole.CONCILIATOR, UserRole.ADMIN))]


def get_purchase_orchestrator(
    session_maker: SessionMaker,
    settings: AppSettings,
) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(
        session_maker,
        default_commission_rate=settings.DEFAULT_COMMISSION_RATE,
        default_affiliate_rate=settings.DEFAULT_AFFILIATE_COMMISSION_RATE,
        platform_user_id=settings.PLATFORM_USER_ID,
        lock_timeout_ms=settings.LOCK_TIMEOUT_MS,
    )


def get_dispute_resolver(
    session_maker: SessionMaker,
    settings: AppSettings,
) -> DisputeResolver:
    return DisputeResolver(session_maker, lock_timeout_ms=settings.LOCK_TIMEOUT_MS)


Orchestrator = Annotated[PurchaseOrchestrator, Depends(get_purchase_orchestrator)]
Resolver = Annotated[DisputeResolver, Depends(get_dispute_resolver)]
