"""Wallet rows: get-or-create with trial grant and the scoped wallet lock."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.wallet import Wallet
from services.credit_types import TransientStoreError, WalletNotFoundError

logger = logging.getLogger(__name__)

TRIAL_ACTION_TYPE = "trial"

# lock_not_available, deadlock_detected, query_canceled, serialization_failure
_TRANSIENT_SQLSTATES = {"55P03", "40P01", "57014", "40001"}


def is_transient_error(exc: DBAPIError) -> bool:
    """True for lock timeouts, deadlocks and dropped connections."""
    if isinstance(exc, OperationalError) or exc.connection_invalidated:
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return sqlstate in _TRANSIENT_SQLSTATES


def _insert_ignoring_conflicts(db: AsyncSession, **values):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(Wallet).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(Wallet).values(**values)
    else:
        raise RuntimeError(f"Unsupported database dialect for wallets: {dialect}")
    return stmt.on_conflict_do_nothing(index_elements=[Wallet.user_id])


async def load_wallet(db: AsyncSession, user_id: str) -> Optional[Wallet]:
    """Read a wallet row without locking, refreshing any cached instance."""
    result = await db.execute(
        select(Wallet)
        .where(Wallet.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_wallet(db: AsyncSession, user_id: str, *, trial_credits: int) -> Wallet:
    """Return the user's wallet, creating it with the trial grant exactly once."""
    wallet = await load_wallet(db, user_id)
    if wallet is not None:
        return wallet

    grant = max(int(trial_credits), 0)
    try:
        result = await db.execute(
            _insert_ignoring_conflicts(
                db,
                user_id=user_id,
                credits_balance=grant,
                credits_used=0,
                is_trial=True,
                trial_credits_given=True,
                use_own_keys=False,
                keys_valid=False,
            )
        )
        created = result.rowcount == 1
        if created and grant > 0:
            db.add(
                CreditTransaction(
                    user_id=user_id,
                    transaction_type="credit",
                    amount=grant,
                    balance_after=grant,
                    action_type=TRIAL_ACTION_TYPE,
                    description=f"Welcome bonus - {grant} trial credits",
                )
            )
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        if is_transient_error(exc):
            raise TransientStoreError(f"Wallet initialization failed: {exc}") from exc
        raise

    if created:
        logger.info("trial_grant user=%s credits=%s", user_id, grant)

    wallet = await load_wallet(db, user_id)
    if wallet is None:
        raise WalletNotFoundError(user_id)
    return wallet


async def _apply_lock_timeout(db: AsyncSession, lock_timeout_ms: Optional[int]) -> None:
    if not lock_timeout_ms or db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(text(f"SET LOCAL lock_timeout = {int(lock_timeout_ms)}"))


@asynccontextmanager
async def locked_wallet(
    db: AsyncSession,
    user_id: str,
    *,
    lock_timeout_ms: Optional[int] = None,
) -> AsyncIterator[Wallet]:
    """Hold an exclusive lock on one wallet row for a single transaction.

    Commits when the block exits normally and rolls back on every other exit
    path, so the lock is always released and no partial mutation survives.
    """
    try:
        await _apply_lock_timeout(db, lock_timeout_ms)
        result = await db.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise WalletNotFoundError(user_id)
        yield wallet
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        if is_transient_error(exc):
            raise TransientStoreError(f"Wallet lock failed for {user_id}: {exc}") from exc
        raise
    except BaseException:
        await db.rollback()
        raise
