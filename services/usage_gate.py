"""Advisory capability checks for credit-gated features.

The gate only reads; ``UsageDebit.consume`` re-checks the balance when it
commits, so a positive answer here is a UI hint, not a reservation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from services.ledger import AccountLedger, AccountState


@dataclass(frozen=True)
class Capabilities:
    can_use_ai: bool
    can_export: bool
    can_cover_amount: bool


def capabilities_for(state: AccountState, amount: int = 1) -> Capabilities:
    return Capabilities(
        can_use_ai=state.is_premium or state.credits > 0,
        can_export=state.is_premium,
        can_cover_amount=state.is_premium or state.credits >= max(int(amount), 0),
    )


class UsageGate:
    def __init__(self, db: AsyncSession, ledger: Optional[AccountLedger] = None):
        self.ledger = ledger or AccountLedger(db)

    async def can_consume(self, account_id: str, amount: int = 1) -> Capabilities:
        state = await self.ledger.get_account(account_id)
        return capabilities_for(state, amount)
