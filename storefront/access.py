"""Owner check shared by every order, order-item and payment endpoint."""
import logging
from uuid import UUID

from fastapi import Depends
from sqlalchemy.orm import Session

from . import crud
from .auth import get_current_user_id
from .database import get_db
from .errors import ForbiddenError, NotFoundError
from .models import Order, OrderItem, Payment

logger = logging.getLogger(__name__)


def ensure_owner(order: Order, user_id: UUID) -> Order:
    if order.user_id != user_id:
        logger.warning("User %s denied access to order %s", user_id, order.id)
        raise ForbiddenError()
    return order


def load_owned_order(db: Session, order_id: UUID, user_id: UUID) -> Order:
    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise NotFoundError(f"Order with id {order_id} not found")
    return ensure_owner(db_order, user_id)


def get_owned_order(
    order_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Order:
    return load_owned_order(db, order_id, user_id)


def get_owned_order_item(
    item_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> OrderItem:
    item = crud.get_order_item(db, item_id)
    if item is None:
        raise NotFoundError(f"Order item with id {item_id} not found")
    ensure_owner(item.order, user_id)
    return item


def get_owned_payment(
    payment_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Payment:
    payment = crud.get_payment(db, payment_id)
    if payment is None:
        raise NotFoundError(f"Payment with id {payment_id} not found")
    ensure_owner(payment.order, user_id)
    return payment
