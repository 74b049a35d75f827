"""Atomic unit of work shared by every money- or inventory-moving operation.

Purchases and dispute resolutions claim inventory, move money and persist
their own records inside one database transaction. This module is the single
place where that transaction is opened, committed and rolled back, so no
service has to remember to "mark as completed" or clean up after a partial
failure.

EXAMPLE:
    async with unit_of_work(session_maker) as session:
        ledger = WalletLedger(session)
        await ledger.debit(wallet_id, Decimal("30.0000"), "order-42:debit")
    # committed here; any exception above rolled everything back
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.core.exceptions import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def unit_of_work(
    session_maker: async_sessionmaker[AsyncSession],
    lock_timeout_ms: int | None = None,
) -> AsyncIterator[AsyncSession]:
    """Open a session and a transaction that commits only if the block succeeds.

    Any exception raised inside the block, including cancellation, rolls the
    transaction back before propagating. Lock timeouts and connection
    failures are re-raised as TransientStorageError so callers can retry.
    """
    async with session_maker() as session:
        try:
            async with session.begin():
                if lock_timeout_ms and session.bind.dialect.name == "postgresql":
                    await session.execute(
                        text(f"SET LOCAL lock_timeout = '{int(lock_timeout_ms)}ms'")
                    )
                yield session
        except OperationalError as exc:
            logger.warning("Unit of work rolled back on storage error: %s", exc.orig)
            raise TransientStorageError(
                "Storage temporarily unavailable, the operation was rolled back"
            ) from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                logger.warning("Unit of work lost its connection: %s", exc.orig)
                raise TransientStorageError(
                    "Database connection lost, the operation was rolled back"
                ) from exc
            raise


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 0.1,
) -> T:
    """Run ``operation`` again when it fails with a retryable storage error.

    Only safe for idempotent operations: purchases and dispute resolutions
    are, because their ledger writes are keyed.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except TransientStorageError:
            attempt += 1
            if attempt >= attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.info(
                "Retrying after transient storage error (attempt %d/%d, sleeping %.2fs)",
                attempt,
                attempts,
                delay,
            )
            await asyncio.sleep(delay)
