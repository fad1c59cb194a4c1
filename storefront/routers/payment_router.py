import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .. import crud, schemas
from ..access import get_owned_order, get_owned_payment
from ..database import get_db
from ..errors import NotFoundError, PaymentProviderUnavailableError
from ..models import Order, Payment
from ..services import payments

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/orders/{order_id}",
    response_model=schemas.PaymentOut,
    status_code=status.HTTP_201_CREATED,
)
def create_payment(
    body: schemas.PaymentMethodUpdate,
    db_order: Order = Depends(get_owned_order),
    db: Session = Depends(get_db),
):
    """Choose how the order will be paid. The payment stays pending until confirmed."""
    return payments.select_payment_method(db, db_order, body.payment_method)


@router.get("/orders/{order_id}", response_model=schemas.PaymentOut)
def get_payment(db_order: Order = Depends(get_owned_order), db: Session = Depends(get_db)):
    payment = crud.get_payment_by_order(db, db_order.id)
    if payment is None:
        raise NotFoundError("No payment found for this order")
    return payment


@router.api_route("/{payment_id}", methods=["PATCH", "PUT"], status_code=status.HTTP_204_NO_CONTENT)
def update_payment(
    body: schemas.PaymentMethodUpdate,
    payment: Payment = Depends(get_owned_payment),
    db: Session = Depends(get_db),
):
    payments.update_payment_method(db, payment, body.payment_method)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{payment_id}/confirm", response_model=schemas.PaymentOut)
def confirm_payment(payment: Payment = Depends(get_owned_payment), db: Session = Depends(get_db)):
    return payments.confirm_offline_payment(db, payment)


@router.post("/{payment_id}/stripe-intent", response_model=schemas.StripeIntentResponse)
def create_stripe_intent(payment: Payment = Depends(get_owned_payment), db: Session = Depends(get_db)):
    payment, intent = payments.create_stripe_intent(db, payment)
    # client_secret is safe to send to the client; Stripe.js needs it
    return {
        "payment_id": payment.id,
        "payment_intent_id": intent.id,
        "client_secret": intent.client_secret,
    }


@router.post("/stripe/webhook", include_in_schema=False)
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Stripe webhook endpoint; settles or fails the bound payment."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    try:
        event = payments.verify_stripe_event(payload, sig_header)
    except PaymentProviderUnavailableError:
        raise
    except Exception as e:
        logger.warning("Stripe webhook verification failed: %s", e)
        raise HTTPException(status_code=400, detail="Webhook signature verification failed")

    await run_in_threadpool(payments.apply_stripe_event, db, event)
    # Always return 200 to acknowledge receipt.
    return {"received": True}
