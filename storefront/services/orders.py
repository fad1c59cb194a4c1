"""Order placement and the other order workflows.

Every workflow runs inside one ``transaction``: either all of its writes
(order, items, payment, stock changes) commit, or none do. Product rows are
locked with ``SELECT ... FOR UPDATE`` before their stock is read, in
ascending id order, so concurrent orders for the same product serialize and
stock never goes negative.
"""
import logging
from typing import Dict, List
from uuid import UUID

from sqlalchemy.orm import Session

from .. import crud
from ..database import transaction
from ..errors import ConflictError, InsufficientStockError, NotFoundError, UnauthorizedError
from ..messaging import emit
from ..models import Order, OrderItem, OrderStatus, PaymentStatus, Product
from ..schemas import OrderItemCreate

logger = logging.getLogger(__name__)


def _lock_products(db: Session, product_ids) -> Dict[UUID, Product]:
    # Lock rows in a stable order to avoid deadlocks
    locked: Dict[UUID, Product] = {}
    for pid in sorted(set(product_ids), key=str):
        product = crud.lock_product(db, pid)
        if product is None:
            raise NotFoundError(f"Product with id {pid} not found")
        locked[pid] = product
    return locked


def lock_order(db: Session, order_id: UUID) -> Order:
    """Take the order row lock and reload the order and its payment.

    Every status change on an order or its payment goes through here first,
    so status checks made after this call cannot race.
    """
    db_order = crud.lock_order(db, order_id)
    if db_order is None:
        raise NotFoundError(f"Order with id {order_id} not found")
    crud.lock_payment_for_order(db, order_id)
    return db_order


def _ensure_pending(db_order: Order) -> None:
    if db_order.status != OrderStatus.PENDING.value:
        raise ConflictError(f"Order is {db_order.status}; only pending orders can be changed")


def _ensure_items_editable(db_order: Order) -> None:
    _ensure_pending(db_order)
    # the PaymentIntent amount is fixed once it is created
    if db_order.payment is not None and db_order.payment.provider_reference:
        raise ConflictError("Payment has been started; the items of this order can no longer change")


def place_order(db: Session, user_id: UUID, items: List[OrderItemCreate]) -> Order:
    if not items:
        raise ValueError("an order needs at least one item")

    with transaction(db):
        if crud.get_user(db, user_id) is None:
            raise UnauthorizedError("User no longer exists")

        db_order = crud.create_order(db, user_id)
        products = _lock_products(db, [item.product_id for item in items])

        # Merge duplicate product_ids before checking stock
        requested: Dict[UUID, int] = {}
        for item in items:
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
        for pid, qty in requested.items():
            if products[pid].stock < qty:
                raise InsufficientStockError(pid, available=products[pid].stock, requested=qty)

        for item in items:
            crud.add_order_item(db, db_order, products[item.product_id], item.quantity)

        crud.create_payment(db, db_order.id)

    logger.info("Order %s placed by user %s (%d items)", db_order.id, user_id, len(items))
    emit(
        "order.created",
        order_id=str(db_order.id),
        user_id=str(user_id),
        total_amount=str(db_order.total_amount),
        items=[{"product_id": str(i.product_id), "quantity": i.quantity} for i in items],
    )
    return db_order


def _restock(db: Session, order_items: List[OrderItem]) -> None:
    products = _lock_products(db, [item.product_id for item in order_items])
    for item in order_items:
        products[item.product_id].stock += item.quantity


def cancel_order(db: Session, db_order: Order) -> Order:
    with transaction(db):
        lock_order(db, db_order.id)
        _ensure_pending(db_order)
        _restock(db, list(db_order.items))
        db_order.status = OrderStatus.CANCELLED.value
        payment = db_order.payment
        if payment is not None and payment.status in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
            payment.status = PaymentStatus.CANCELLED.value

    logger.info("Order %s cancelled", db_order.id)
    emit("order.cancelled", order_id=str(db_order.id), user_id=str(db_order.user_id))
    return db_order


def remove_order(db: Session, db_order: Order) -> None:
    order_id = db_order.id
    with transaction(db):
        lock_order(db, order_id)
        if db_order.status == OrderStatus.PENDING.value:
            _restock(db, list(db_order.items))
        crud.delete_order(db, db_order)
    logger.info("Order %s deleted", order_id)


def add_item_to_order(db: Session, db_order: Order, item: OrderItemCreate) -> OrderItem:
    with transaction(db):
        lock_order(db, db_order.id)
        _ensure_items_editable(db_order)
        products = _lock_products(db, [item.product_id])
        order_item = crud.add_order_item(db, db_order, products[item.product_id], item.quantity)
    return order_item


def remove_item_from_order(db: Session, order_item: OrderItem) -> None:
    db_order = order_item.order
    with transaction(db):
        lock_order(db, db_order.id)
        _ensure_items_editable(db_order)
        _restock(db, [order_item])
        db_order.total_amount = db_order.total_amount - order_item.price * order_item.quantity
        crud.delete_order_item(db, order_item)
