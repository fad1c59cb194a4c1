import functools
import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import get_password_hash, verify_password
from .database import storage_error
from .errors import ConflictError, EmailAlreadyRegisteredError, InsufficientStockError
from .models import Order, OrderItem, OrderStatus, Payment, PaymentStatus, Product, User
from .schemas import ProductCreate, UserCreate

logger = logging.getLogger(__name__)

# Checked against when the email is unknown, so both login failures cost one hash verification
_DUMMY_HASH = get_password_hash("storefront-timing-equalizer")


def _storage_errors(func):
    """Surface any database failure as StorageError, after rolling back."""

    @functools.wraps(func)
    def wrapper(db: Session, *args, **kwargs):
        try:
            return func(db, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("%s failed: %s", func.__name__, e)
            db.rollback()
            raise storage_error(e) from e

    return wrapper


# -----------------------------
# Users
# -----------------------------

def _normalize_email(email: str) -> str:
    return email.strip().lower()


@_storage_errors
def email_exists(db: Session, email: str) -> bool:
    return db.query(User.id).filter(User.email == _normalize_email(email)).first() is not None


@_storage_errors
def create_user(db: Session, user: UserCreate) -> User:
    db_user = User(
        name=user.name,
        email=_normalize_email(user.email),
        hashed_password=get_password_hash(user.password),
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError:
        # unique email lost a race with a concurrent registration
        db.rollback()
        raise EmailAlreadyRegisteredError()
    db.refresh(db_user)
    return db_user


@_storage_errors
def get_user(db: Session, user_id: UUID) -> Optional[User]:
    return db.get(User, user_id)


@_storage_errors
def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == _normalize_email(email)).first()


@_storage_errors
def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    user = get_user_by_email(db, email)
    if user is None:
        # keep the timing close to a real verification
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


@_storage_errors
def delete_user(db: Session, user_id: UUID) -> bool:
    user = db.get(User, user_id)
    if user is None:
        return False
    db.delete(user)
    db.commit()
    return True


# -----------------------------
# Products
# -----------------------------

@_storage_errors
def create_product(db: Session, product: ProductCreate) -> Product:
    db_product = Product(**product.model_dump())
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


@_storage_errors
def get_product(db: Session, product_id: UUID) -> Optional[Product]:
    return db.get(Product, product_id)


@_storage_errors
def list_products(db: Session, skip: int = 0, limit: int = 100, search: Optional[str] = None) -> List[Product]:
    query = db.query(Product)
    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                Product.name.ilike(search_pattern),
                Product.description.ilike(search_pattern),
            )
        )
    return query.order_by(Product.created_at, Product.id).offset(skip).limit(limit).all()


@_storage_errors
def delete_product(db: Session, product_id: UUID) -> bool:
    db_product = db.get(Product, product_id)
    if db_product is None:
        return False
    db.delete(db_product)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Product is referenced by existing orders")
    return True


@_storage_errors
def lock_product(db: Session, product_id: UUID) -> Optional[Product]:
    """Load a product row and hold a row lock on it until the transaction ends."""
    return (
        db.query(Product)
        .filter(Product.id == product_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


@_storage_errors
def lock_order(db: Session, order_id: UUID) -> Optional[Order]:
    return (
        db.query(Order)
        .filter(Order.id == order_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


@_storage_errors
def lock_payment_for_order(db: Session, order_id: UUID) -> Optional[Payment]:
    return (
        db.query(Payment)
        .filter(Payment.order_id == order_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


# -----------------------------
# Orders
# The accessors below only flush; the caller owns the transaction.
# -----------------------------

@_storage_errors
def create_order(db: Session, user_id: UUID) -> Order:
    db_order = Order(
        user_id=user_id,
        status=OrderStatus.PENDING.value,
        total_amount=Decimal("0.00"),
    )
    db.add(db_order)
    db.flush()  # Get order ID without committing
    return db_order


@_storage_errors
def get_order(db: Session, order_id: UUID) -> Optional[Order]:
    return db.get(Order, order_id)


@_storage_errors
def list_orders_by_user(db: Session, user_id: UUID, skip: int = 0, limit: int = 100) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id)
        .offset(skip)
        .limit(limit)
        .all()
    )


@_storage_errors
def count_orders_by_user(db: Session, user_id: UUID) -> int:
    return db.query(Order).filter(Order.user_id == user_id).count()


@_storage_errors
def delete_order(db: Session, db_order: Order) -> None:
    db.delete(db_order)
    db.flush()


# -----------------------------
# Order items
# -----------------------------

@_storage_errors
def add_order_item(db: Session, db_order: Order, product: Product, quantity: int) -> OrderItem:
    """Insert one line, snapshot the price and take the quantity out of stock.

    The caller must hold the product row lock (see lock_product).
    """
    if product.stock < quantity:
        raise InsufficientStockError(product.id, available=product.stock, requested=quantity)

    item = OrderItem(
        order_id=db_order.id,
        product_id=product.id,
        quantity=quantity,
        price=product.price,
        position=len(db_order.items),
    )
    db_order.items.append(item)
    product.stock -= quantity
    db_order.total_amount = Decimal(db_order.total_amount or 0) + Decimal(product.price) * quantity
    db.flush()
    return item


@_storage_errors
def get_order_item(db: Session, item_id: UUID) -> Optional[OrderItem]:
    return db.get(OrderItem, item_id)


@_storage_errors
def list_order_items(db: Session, order_id: UUID) -> List[OrderItem]:
    return (
        db.query(OrderItem)
        .filter(OrderItem.order_id == order_id)
        .order_by(OrderItem.position)
        .all()
    )


@_storage_errors
def delete_order_item(db: Session, item: OrderItem) -> None:
    order = item.order
    if order is not None:
        order.items.remove(item)
    db.delete(item)
    db.flush()


# -----------------------------
# Payments
# -----------------------------

@_storage_errors
def create_payment(db: Session, order_id: UUID, payment_method: Optional[str] = None) -> Payment:
    db_payment = Payment(
        order_id=order_id,
        payment_method=payment_method,
        status=PaymentStatus.PENDING.value,
    )
    db.add(db_payment)
    db.flush()
    return db_payment


@_storage_errors
def get_payment(db: Session, payment_id: UUID) -> Optional[Payment]:
    return db.get(Payment, payment_id)


@_storage_errors
def get_payment_by_order(db: Session, order_id: UUID) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.order_id == order_id).first()


@_storage_errors
def get_payment_by_provider_reference(db: Session, reference: str) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.provider_reference == reference).first()


@_storage_errors
def set_payment_method(db: Session, db_payment: Payment, payment_method: str) -> Payment:
    db_payment.payment_method = payment_method
    db.flush()
    return db_payment

