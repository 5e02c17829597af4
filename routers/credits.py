"""Credits router: balance checks, usage debits and package purchases."""

from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.checkout import confirm_checkout_session, create_checkout_session
from services.credits import CreditService
from services.packages import list_packages, serialize_package

router = APIRouter()
logger = logging.getLogger(__name__)


class PurchaseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package_id: str = Field(alias="packageId", min_length=1, max_length=64)


class PurchaseConfirmRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=255)


class UseCreditsRequest(BaseModel):
    amount: int = Field(default=1, ge=1, le=settings.MAX_USAGE_AMOUNT)
    description: Optional[str] = Field(default=None, max_length=255)


class CheckCreditsResponse(BaseModel):
    credits: int
    tier: str
    canUseAI: bool
    canExport: bool


class UseCreditsResponse(BaseModel):
    success: bool
    remainingCredits: Union[int, str]
    charged: int
    replayed: bool = False


class PurchaseResponse(BaseModel):
    url: str
    sessionId: str


class PurchaseConfirmResponse(BaseModel):
    success: bool
    newBalance: int
    creditsAdded: int
    replayed: bool = False


@router.get("/check", response_model=CheckCreditsResponse)
async def check_credits(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await CreditService(db).check(auth.account_id)


@router.get("/packages")
async def credit_packages(db: AsyncSession = Depends(get_db)):
    packages = await list_packages(db)
    return {"packages": [serialize_package(package) for package in packages]}


@router.get("/transactions")
async def credit_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await CreditService(db).transaction_history(auth.account_id, limit=limit)


@router.post("/use", response_model=UseCreditsResponse)
async def use_credits(
    request: UseCreditsRequest,
    idempotency_key: Optional[str] = Header(default=None, max_length=255),
    _rate_limit: None = Depends(rate_limit("credits_use", limit=120, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    description = (request.description or "").strip() or settings.DEFAULT_USAGE_DESCRIPTION
    result = await CreditService(db).consume(
        auth.account_id,
        request.amount,
        description,
        request_id=f"use:{idempotency_key}" if idempotency_key else None,
    )
    return {
        "success": True,
        "remainingCredits": result.remaining_credits,
        "charged": result.charged,
        "replayed": result.replayed,
    }


@router.post("/purchase", response_model=PurchaseResponse)
async def purchase_credits(
    request: PurchaseRequest,
    _rate_limit: None = Depends(rate_limit("credits_purchase", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await create_checkout_session(db, auth.account_id, request.package_id)


@router.post("/purchase/confirm", response_model=PurchaseConfirmResponse)
async def confirm_purchase(
    request: PurchaseConfirmRequest,
    _rate_limit: None = Depends(rate_limit("credits_confirm", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    grant = await confirm_checkout_session(db, auth.account_id, request.session_id)
    return {
        "success": True,
        "newBalance": grant.new_balance,
        "creditsAdded": grant.credited,
        "replayed": grant.replayed,
    }
