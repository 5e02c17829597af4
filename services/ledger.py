"""Account ledger: authoritative balance and tier per account."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.account import Account, AccountTier
from services.errors import AccountNotFound, InsufficientCredits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountState:
    account_id: str
    credits: int
    tier: AccountTier

    @property
    def is_premium(self) -> bool:
        return self.tier == AccountTier.PREMIUM


class AccountLedger:
    """Reads accounts and applies balance deltas.

    ``adjust_balance`` is the only code path that writes ``Account.credits``.
    It stages the change on the caller's session; committing is left to the
    surrounding unit of work so the paired transaction row lands with it.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_account(self, account_id: str) -> AccountState:
        result = await self.db.execute(
            select(Account.id, Account.credits, Account.tier).where(Account.id == account_id)
        )
        row = result.one_or_none()
        if row is None:
            raise AccountNotFound(account_id)
        return AccountState(account_id=row.id, credits=int(row.credits), tier=AccountTier(row.tier))

    async def adjust_balance(self, account_id: str, delta: int) -> int:
        """Apply ``delta`` to the stored balance and return the new balance.

        Negative deltas are applied with a conditional update so two
        concurrent debits can never both pass a stale balance check.
        """
        delta = int(delta)
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(credits=Account.credits + delta, updated_at=datetime.now(timezone.utc))
            .returning(Account.credits)
            .execution_options(synchronize_session=False)
        )
        if delta < 0:
            stmt = stmt.where(Account.credits + delta >= 0)

        result = await self.db.execute(stmt)
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            state = await self.get_account(account_id)
            raise InsufficientCredits(required=-delta, available=state.credits)
        return int(new_balance)

    async def open_account(
        self,
        account_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Account:
        """Return the account, creating it with a zero free-tier balance on first sight."""
        now = datetime.now(timezone.utc)
        result = await self.db.execute(select(Account).where(Account.id == account_id))
        account = result.scalar_one_or_none()
        if account is not None:
            account.last_login_at = now
            if name and not account.name:
                account.name = name
            return account

        account = Account(
            id=account_id,
            email=email,
            name=name,
            credits=0,
            tier=AccountTier.FREE.value,
            last_login_at=now,
        )
        self.db.add(account)
        await self.db.flush()
        logger.info("Opened account %s", account_id)
        return account

    async def set_tier(self, account_id: str, tier: AccountTier) -> AccountState:
        result = await self.db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(tier=tier.value, updated_at=datetime.now(timezone.utc))
            .returning(Account.credits)
            .execution_options(synchronize_session=False)
        )
        credits = result.scalar_one_or_none()
        if credits is None:
            raise AccountNotFound(account_id)
        return AccountState(account_id=account_id, credits=int(credits), tier=tier)
