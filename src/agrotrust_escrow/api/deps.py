"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the escrow
service, the Redis client and configuration. The service itself is built
once at startup and kept on ``app.state``; tests swap it via
``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

from agrotrust_escrow.config import Settings, get_settings
from agrotrust_escrow.infrastructure.database.engine import get_session_factory
from agrotrust_escrow.infrastructure.database.repositories import SqlContractStore
from agrotrust_escrow.infrastructure.redis_client import get_redis
from agrotrust_escrow.payments import PaymentAuthorityFactory
from agrotrust_escrow.services.escrow_service import EscrowService

if TYPE_CHECKING:
    import redis.asyncio as aioredis


def build_escrow_service(settings: Settings) -> EscrowService:
    """Wire the SQL store and the configured payment authority into a service."""
    return EscrowService(
        store=SqlContractStore(get_session_factory()),
        payments=PaymentAuthorityFactory.create(settings),
        settings=settings,
    )


def get_escrow_service(request: Request) -> EscrowService:
    """Provide the application's EscrowService."""
    return request.app.state.escrow_service


def get_redis_client() -> aioredis.Redis | None:
    """Provide the Redis client, or None when Redis is unavailable."""
    return get_redis()


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
