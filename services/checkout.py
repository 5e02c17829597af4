"""Stripe Checkout integration for credit package purchases.

Two steps:
- ``create_checkout_session`` prices a package and returns the hosted payment URL.
- ``confirm_checkout_session`` asks Stripe whether the session was paid and
  only then credits the account, keyed by the session id so a repeated
  confirmation is replayed rather than credited twice.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from config import require_stripe_secret_key, settings
from services.errors import BillingUnavailable, PaymentNotConfirmed
from services.packages import resolve_package
from services.purchases import CreditGrant, PurchaseIntake

logger = logging.getLogger(__name__)


def _stripe_api_key() -> str:
    if not settings.BILLING_ENABLED:
        raise BillingUnavailable("Billing is disabled. Enable BILLING_ENABLED to use checkout.")
    try:
        return require_stripe_secret_key()
    except ValueError as exc:
        raise BillingUnavailable("Stripe is not configured.") from exc


async def create_checkout_session(db: AsyncSession, account_id: str, package_id: str) -> Dict[str, Any]:
    package = await resolve_package(db, package_id)
    api_key = _stripe_api_key()
    base = settings.APP_URL.rstrip("/")

    session_params = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [
            {
                "price_data": {
                    "currency": package.currency or settings.STRIPE_CURRENCY,
                    "product_data": {
                        "name": f"{package.credits} Credits",
                        "description": package.description or package.name,
                    },
                    "unit_amount": int(package.price_cents),
                },
                "quantity": 1,
            }
        ],
        "success_url": f"{base}/credits/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base}/pricing",
        "client_reference_id": account_id,
        "metadata": {
            "packageId": package.id,
            "userId": account_id,
        },
    }

    try:
        session = await asyncio.to_thread(stripe.checkout.Session.create, api_key=api_key, **session_params)
    except stripe.StripeError as exc:
        logger.error("Stripe checkout error for account %s: %s", account_id, exc)
        raise BillingUnavailable("Failed to create checkout session.") from exc

    logger.info("Checkout session created for account %s package %s: %s", account_id, package.id, session.id)
    return {"url": session.url, "sessionId": session.id}


async def confirm_checkout_session(db: AsyncSession, account_id: str, session_id: str) -> CreditGrant:
    api_key = _stripe_api_key()
    try:
        session = await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id, api_key=api_key)
    except stripe.StripeError as exc:
        logger.error("Stripe session lookup failed for %s: %s", session_id, exc)
        raise PaymentNotConfirmed("Checkout session could not be verified.", session_id=session_id) from exc

    metadata = session.metadata or {}
    if metadata.get("userId") != account_id:
        raise PaymentNotConfirmed("Checkout session belongs to a different account.", session_id=session_id)
    if session.payment_status != "paid":
        raise PaymentNotConfirmed(
            "Payment has not completed.",
            session_id=session_id,
            payment_status=session.payment_status,
        )

    # The session is paid, so a package retired since checkout is still honoured.
    return await PurchaseIntake(db).apply_purchase(
        account_id,
        metadata.get("packageId"),
        request_id=f"stripe:{session_id}",
        include_inactive=True,
    )
