"""
Admin-only credit operations.
Requires X-Admin-Key header for all endpoints.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.account import AccountTier
from routers.auth_scope import require_admin
from services.credits import CreditService

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


class BonusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(alias="accountId", min_length=1)
    credits: int = Field(ge=1, le=100000)
    description: str = Field(default="Bonus credits", max_length=255)


class TierRequest(BaseModel):
    tier: AccountTier


@router.post("/credits/bonus")
async def grant_bonus(
    request: BonusRequest,
    idempotency_key: Optional[str] = Header(default=None, max_length=255),
    db: AsyncSession = Depends(get_db),
):
    grant = await CreditService(db).grant_bonus(
        request.account_id,
        request.credits,
        request.description,
        request_id=f"bonus:{idempotency_key}" if idempotency_key else None,
    )
    logger.info("Admin bonus account=%s credits=%s replayed=%s", request.account_id, request.credits, grant.replayed)
    return {
        "success": True,
        "newBalance": grant.new_balance,
        "creditsAdded": grant.credited,
        "transactionId": grant.transaction_id,
        "replayed": grant.replayed,
    }


@router.put("/accounts/{account_id}/tier")
async def set_account_tier(
    account_id: str,
    request: TierRequest,
    db: AsyncSession = Depends(get_db),
):
    state = await CreditService(db).set_tier(account_id, request.tier)
    logger.info("Admin tier change account=%s tier=%s", account_id, state.tier.value)
    return {"accountId": state.account_id, "tier": state.tier.value, "credits": state.credits}


@router.get("/accounts/{account_id}/reconcile")
async def reconcile_account(
    account_id: str,
    db: AsyncSession = Depends(get_db),
):
    report = await CreditService(db).reconcile(account_id)
    if not report["consistent"]:
        logger.warning(
            "Ledger mismatch account=%s balance=%s ledger_sum=%s",
            account_id,
            report["balance"],
            report["ledgerSum"],
        )
    return report
