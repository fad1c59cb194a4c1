from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..access import get_owned_order, get_owned_order_item
from ..auth import get_current_user_id
from ..database import get_db
from ..models import Order, OrderItem
from ..services import orders

router = APIRouter(
    prefix="/orders",
    tags=["orders"]
)

# Item deletion lives outside the /orders prefix
items_router = APIRouter(prefix="/order_items", tags=["orders"])


@router.post("", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    order: schemas.OrderCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Place an order for the current user.

    Creates the order, one item per submitted line (price captured now), takes
    the quantities out of stock and opens a pending payment, all in a single
    transaction. Line items and the payment are fetched separately.
    """
    return orders.place_order(db, user_id, order.items)


@router.get("/me", response_model=schemas.OrderListResponse)
def get_user_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    user_orders = crud.list_orders_by_user(db, user_id, skip=skip, limit=limit)
    total = crud.count_orders_by_user(db, user_id)

    return {
        "orders": user_orders,
        "total": total,
        "skip": skip,
        "limit": limit
    }


@router.get("/{order_id}", response_model=schemas.OrderDetailOut)
def get_order(db_order: Order = Depends(get_owned_order)):
    return db_order


@router.post("/{order_id}/cancel", response_model=schemas.OrderOut)
def cancel_order(db_order: Order = Depends(get_owned_order), db: Session = Depends(get_db)):
    return orders.cancel_order(db, db_order)


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(db_order: Order = Depends(get_owned_order), db: Session = Depends(get_db)):
    orders.remove_order(db, db_order)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{order_id}/items", response_model=schemas.OrderItemOut, status_code=status.HTTP_201_CREATED)
def create_order_item(
    item: schemas.OrderItemCreate,
    db_order: Order = Depends(get_owned_order),
    db: Session = Depends(get_db),
):
    return orders.add_item_to_order(db, db_order, item)


@router.get("/{order_id}/items", response_model=list[schemas.OrderItemOut])
def get_order_items(db_order: Order = Depends(get_owned_order), db: Session = Depends(get_db)):
    return crud.list_order_items(db, db_order.id)


@items_router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order_item(order_item: OrderItem = Depends(get_owned_order_item), db: Session = Depends(get_db)):
    orders.remove_item_from_order(db, order_item)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
