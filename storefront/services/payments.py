"""Payment method selection and settlement.

Choosing a payment method and settling the payment are separate steps: a
method update leaves the payment ``pending``; only ``confirm_payment`` (called
by the owner for offline methods, or by the Stripe webhook) marks the payment
and its order ``paid``.
"""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Tuple

import stripe
from sqlalchemy.orm import Session

from .. import config, crud
from ..database import transaction
from ..errors import ConflictError, PaymentProviderUnavailableError
from ..messaging import emit
from ..models import Order, OrderStatus, Payment, PaymentStatus
from .orders import lock_order

logger = logging.getLogger(__name__)

STRIPE_METHOD = "stripe"

_CHANGEABLE = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)

_REUSABLE_INTENT_STATUSES = ("requires_payment_method", "requires_confirmation", "requires_action")
# money is moving or already moved; the intent must not be replaced
_BUSY_INTENT_STATUSES = ("processing", "requires_capture", "succeeded")


def _ensure_changeable(payment: Payment) -> None:
    if payment.status not in _CHANGEABLE:
        raise ConflictError(f"Payment is {payment.status} and can no longer be changed")


def _to_minor_units(amount) -> int:
    # Convert decimal currency to integer minor units (e.g., cents)
    dec = Decimal(str(amount))
    minor = (dec * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def select_payment_method(db: Session, db_order: Order, payment_method: str) -> Payment:
    """Attach a payment method to the order's payment, creating the row if needed."""
    with transaction(db):
        lock_order(db, db_order.id)
        if db_order.status != OrderStatus.PENDING.value:
            raise ConflictError(f"Order is {db_order.status}; payment can no longer be changed")
        payment = db_order.payment
        if payment is None:
            payment = crud.create_payment(db, db_order.id, payment_method)
        else:
            _ensure_changeable(payment)
            crud.set_payment_method(db, payment, payment_method)
            payment.status = PaymentStatus.PENDING.value
    return payment


def update_payment_method(db: Session, payment: Payment, payment_method: str) -> Payment:
    with transaction(db):
        lock_order(db, payment.order_id)
        _ensure_changeable(payment)
        crud.set_payment_method(db, payment, payment_method)
        # A failed attempt goes back to pending with the new method
        payment.status = PaymentStatus.PENDING.value
    return payment


def confirm_payment(db: Session, payment: Payment, provider_reference: Optional[str] = None) -> Payment:
    """Settle the payment and mark its order paid.

    A provider confirmation (``provider_reference`` given) may also settle a
    payment that failed earlier: the customer can retry on the same intent.
    """
    settleable = _CHANGEABLE if provider_reference else (PaymentStatus.PENDING.value,)
    with transaction(db):
        db_order = lock_order(db, payment.order_id)
        if payment.status not in settleable:
            raise ConflictError(f"Payment is {payment.status} and cannot be confirmed")
        if not payment.payment_method:
            raise ConflictError("Select a payment method before confirming the payment")
        if db_order.status != OrderStatus.PENDING.value:
            raise ConflictError(f"Order is {db_order.status}; it cannot be paid")

        payment.status = PaymentStatus.PAID.value
        if provider_reference:
            payment.provider_reference = provider_reference
        db_order.status = OrderStatus.PAID.value

    logger.info("Payment %s settled for order %s", payment.id, db_order.id)
    emit(
        "order.paid",
        order_id=str(db_order.id),
        user_id=str(db_order.user_id),
        payment_id=str(payment.id),
        payment_method=payment.payment_method,
        amount=str(db_order.total_amount),
    )
    return payment


def confirm_offline_payment(db: Session, payment: Payment) -> Payment:
    """Owner-side confirmation for methods without a provider callback."""
    if payment.payment_method == STRIPE_METHOD:
        raise ConflictError("Stripe payments are confirmed by the provider")
    return confirm_payment(db, payment)


def fail_payment(db: Session, payment: Payment, reason: Optional[str] = None) -> Payment:
    with transaction(db):
        lock_order(db, payment.order_id)
        if payment.status != PaymentStatus.PENDING.value:
            raise ConflictError(f"Payment is {payment.status}; only pending payments can fail")
        payment.status = PaymentStatus.FAILED.value
    logger.warning("Payment %s failed: %s", payment.id, reason or "no reason given")
    return payment


# -----------------------------
# Stripe
# -----------------------------

def _stripe_required(*, webhook: bool = False) -> None:
    if not config.STRIPE_SECRET_KEY or (webhook and not config.STRIPE_WEBHOOK_SECRET):
        raise PaymentProviderUnavailableError()
    stripe.api_key = config.STRIPE_SECRET_KEY


def _reuse_bound_intent(intent_id: str, amount_minor: int) -> Optional[Any]:
    """Return the bound intent if it can still be paid, else cancel it."""
    intent = stripe.PaymentIntent.retrieve(intent_id)
    if intent.status in _BUSY_INTENT_STATUSES:
        raise ConflictError("A payment for this order is already being processed")
    if (
        intent.status in _REUSABLE_INTENT_STATUSES
        and intent.amount == amount_minor
        and intent.currency == config.STRIPE_CURRENCY.lower()
    ):
        return intent
    if intent.status != "canceled":
        stripe.PaymentIntent.cancel(intent.id)
        logger.info("Cancelled stale PaymentIntent %s", intent.id)
    return None


def create_stripe_intent(db: Session, payment: Payment) -> Tuple[Payment, Any]:
    """Create a PaymentIntent for the order total and bind it to the payment.

    A payment keeps at most one live intent: an open intent for the same
    amount is handed out again, anything else bound before is cancelled.
    """
    _stripe_required()
    _ensure_changeable(payment)
    db_order = payment.order
    if db_order.status != OrderStatus.PENDING.value:
        raise ConflictError(f"Order is {db_order.status}; it cannot be paid")
    amount_minor = _to_minor_units(db_order.total_amount)
    if amount_minor <= 0:
        raise ConflictError("Order has nothing to pay")

    bound_reference = payment.provider_reference
    if bound_reference:
        intent = _reuse_bound_intent(bound_reference, amount_minor)
        if intent is not None:
            return payment, intent

    intent = stripe.PaymentIntent.create(
        amount=amount_minor,
        currency=config.STRIPE_CURRENCY,
        automatic_payment_methods={"enabled": True},
        metadata={
            "order_id": str(db_order.id),
            "payment_id": str(payment.id),
            "user_id": str(db_order.user_id),
        },
        description=f"Order #{db_order.id}",
    )

    with transaction(db):
        lock_order(db, payment.order_id)
        # another request bound an intent in the meantime
        stale = payment.provider_reference != bound_reference or payment.status not in _CHANGEABLE
        if not stale:
            crud.set_payment_method(db, payment, STRIPE_METHOD)
            payment.provider_reference = intent.id
            payment.status = PaymentStatus.PENDING.value
    if stale:
        stripe.PaymentIntent.cancel(intent.id)
        raise ConflictError("Payment changed while the intent was being created")
    return payment, intent


def _payment_for_intent(db: Session, data_object: Dict[str, Any]) -> Optional[Payment]:
    intent_id = data_object.get("id")
    if not intent_id:
        return None
    payment = crud.get_payment_by_provider_reference(db, intent_id)
    if payment is None:
        logger.warning("No payment bound to PaymentIntent %s", intent_id)
    return payment


def _charged_in_full(payment: Payment, data_object: Dict[str, Any]) -> bool:
    expected = _to_minor_units(payment.order.total_amount)
    currency = str(data_object.get("currency") or "").lower()
    return data_object.get("amount_received") == expected and currency == config.STRIPE_CURRENCY.lower()


def _apply(action, db: Session, payment: Payment, intent_id: str, **kwargs) -> Payment:
    # The event is acknowledged either way; Stripe would redeliver it forever
    try:
        return action(db, payment, **kwargs)
    except ConflictError as e:
        logger.error(
            "PaymentIntent %s could not be applied to payment %s: %s", intent_id, payment.id, e.detail
        )
        return payment


def verify_stripe_event(payload: bytes, sig_header: str) -> Dict[str, Any]:
    """Check the Stripe-Signature header and return the event as a plain dict."""
    _stripe_required(webhook=True)
    event = stripe.Webhook.construct_event(
        payload=payload,
        sig_header=sig_header,
        secret=config.STRIPE_WEBHOOK_SECRET,
    )
    return event.to_dict()


def apply_stripe_event(db: Session, event) -> Optional[Payment]:
    """Apply a verified Stripe event; returns the affected payment, if any."""
    event_type = event.get("type")
    data_object = (event.get("data") or {}).get("object") or {}
    intent_id = data_object.get("id")

    if event_type == "payment_intent.succeeded":
        payment = _payment_for_intent(db, data_object)
        if payment is None:
            return None
        if payment.status == PaymentStatus.PAID.value:
            # Stripe redelivers events; settling twice is a no-op
            return payment
        if not _charged_in_full(payment, data_object):
            logger.error(
                "PaymentIntent %s received %s %s, order %s totals %s",
                intent_id,
                data_object.get("amount_received"),
                data_object.get("currency"),
                payment.order_id,
                payment.order.total_amount,
            )
            if payment.status != PaymentStatus.PENDING.value:
                return payment
            return _apply(fail_payment, db, payment, intent_id, reason="amount received does not match the order total")
        return _apply(confirm_payment, db, payment, intent_id, provider_reference=intent_id)

    if event_type == "payment_intent.payment_failed":
        payment = _payment_for_intent(db, data_object)
        if payment is None:
            return None
        if payment.status != PaymentStatus.PENDING.value:
            return payment
        last_err = data_object.get("last_payment_error") or {}
        return _apply(fail_payment, db, payment, intent_id, reason=last_err.get("message"))

    logger.info("Ignoring Stripe event %s", event_type)
    return None
