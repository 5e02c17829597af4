"""
Account provisioning for signed-in users.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db, unit_of_work
from models.account import Account
from routers.auth_scope import AuthContext, get_auth_context
from services.errors import AccountConflict, AccountNotFound
from services.ledger import AccountLedger

router = APIRouter()
logger = logging.getLogger(__name__)


def _account_payload(account: Account) -> dict:
    return {
        "id": account.id,
        "email": account.email,
        "name": account.name,
        "credits": account.credits,
        "tier": account.tier,
    }


class OpenAccountRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)


class AccountResponse(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    credits: int
    tier: str


@router.post("", response_model=AccountResponse)
async def open_account(
    request: Optional[OpenAccountRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Create the caller's account on first sign-in; later calls return it unchanged."""
    ledger = AccountLedger(db)
    name = request.name if request else None
    try:
        async with unit_of_work(db):
            account = await ledger.open_account(auth.account_id, email=auth.email, name=name)
    except IntegrityError:
        # Lost a first-sign-in race; the row exists now unless the email is taken.
        try:
            async with unit_of_work(db):
                account = await ledger.open_account(auth.account_id, email=auth.email, name=name)
        except IntegrityError as exc:
            logger.warning("Account %s rejected: email already registered", auth.account_id)
            raise AccountConflict("Email is already registered to another account.") from exc
    return _account_payload(account)


@router.get("/me", response_model=AccountResponse)
async def get_current_account(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Account).where(Account.id == auth.account_id))
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFound(auth.account_id)
    return _account_payload(account)
