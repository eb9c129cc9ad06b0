"""
Idempotency support so operator actions can be retried and replays are harmless.
"""

from datetime import UTC, datetime, timedelta
from typing import Any, Awaitable, Callable

from fastapi import Header
from sqlalchemy import JSON, Integer, String, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import select

from formjobs.config.logging import get_logger
from formjobs.infra.database import Base, UTCDateTime
from formjobs.v1.core.exceptions import ValidationError
from formjobs.v1.core.security import Principal

logger = get_logger(__name__)

MAX_KEY_LENGTH = 255


class IdempotencyKey(Base):
    """Idempotency key storage for preventing duplicate operations."""

    __tablename__ = "idempotency_keys"

    key: Mapped[str] = mapped_column(String(MAX_KEY_LENGTH), primary_key=True)
    endpoint: Mapped[str] = mapped_column(String(100), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    response_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, index=True
    )


class IdempotencyService:
    """Service for handling idempotency keys and duplicate request detection."""

    def __init__(self, session: AsyncSession, ttl_hours: int = 24):
        self.session = session
        self.ttl_hours = ttl_hours

    async def check_idempotency_key(
        self, key: str, endpoint: str, principal: Principal
    ) -> tuple[dict[str, Any], int] | None:
        """
        Look up a stored response for this key.

        Returns:
            None if the key is new or expired, otherwise (response_data, status_code)
        """
        await self._cleanup_expired_keys()

        stmt = select(IdempotencyKey).where(
            IdempotencyKey.key == key,
            IdempotencyKey.endpoint == endpoint,
            IdempotencyKey.user_id == principal.user_id,
            IdempotencyKey.expires_at > datetime.now(UTC),
        )

        result = await self.session.execute(stmt)
        existing = result.scalar_one_or_none()

        if existing:
            return existing.response_data, existing.status_code

        return None

    async def store_idempotency_key(
        self,
        key: str,
        endpoint: str,
        principal: Principal,
        response_data: dict[str, Any],
        status_code: int,
    ) -> None:
        """Store the response so a repeated request replays it."""
        record = IdempotencyKey(
            key=key,
            endpoint=endpoint,
            user_id=principal.user_id,
            response_data=response_data,
            status_code=status_code,
            expires_at=datetime.now(UTC) + timedelta(hours=self.ttl_hours),
        )

        self.session.add(record)
        try:
            await self.session.commit()
        except IntegrityError:
            # A concurrent request with the same key stored its response first
            await self.session.rollback()
            logger.info("Idempotency key already stored", key=key, endpoint=endpoint)

    async def _cleanup_expired_keys(self) -> None:
        """Remove expired idempotency keys from the database."""
        stmt = delete(IdempotencyKey).where(
            IdempotencyKey.expires_at <= datetime.now(UTC)
        )
        await self.session.execute(stmt)
        await self.session.commit()


def get_idempotency_key(
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
) -> str | None:
    """Extract idempotency key from request headers."""
    if idempotency_key is not None and not (
        0 < len(idempotency_key) <= MAX_KEY_LENGTH
    ):
        raise ValidationError(
            f"Idempotency-Key must be 1-{MAX_KEY_LENGTH} characters long"
        )
    return idempotency_key


async def handle_idempotent_request(
    session: AsyncSession,
    principal: Principal,
    endpoint: str,
    idempotency_key: str | None,
    handler_func: Callable[[], Awaitable[tuple[dict[str, Any], int]]],
    ttl_hours: int = 24,
) -> tuple[dict[str, Any], int]:
    """
    Run handler_func once per idempotency key.

    Args:
        session: Database session
        principal: Current caller
        endpoint: API endpoint identifier
        idempotency_key: Idempotency key from headers (optional)
        handler_func: Coroutine function producing (response_data, status_code)
        ttl_hours: How long the stored response is replayed

    Returns:
        (response_data, status_code) tuple
    """
    service = IdempotencyService(session, ttl_hours=ttl_hours)

    if idempotency_key:
        cached_response = await service.check_idempotency_key(
            idempotency_key, endpoint, principal
        )
        if cached_response:
            logger.info(
                "Replaying stored response",
                endpoint=endpoint,
                user_id=principal.user_id,
            )
            return cached_response

    response_data, status_code = await handler_func()

    if idempotency_key:
        await service.store_idempotency_key(
            idempotency_key, endpoint, principal, response_data, status_code
        )

    return response_data, status_code
