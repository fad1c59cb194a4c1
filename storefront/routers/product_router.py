from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from .. import crud
from ..database import get_db
from ..errors import NotFoundError
from ..schemas import ProductCreate, ProductOut

router = APIRouter(prefix="/products", tags=["products"])


@router.post("/create", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(product: ProductCreate, db: Session = Depends(get_db)):
    return crud.create_product(db, product)


@router.get("", response_model=List[ProductOut])
def list_products(
    skip: int = Query(0, ge=0, description="Skip number of products"),
    limit: int = Query(100, ge=1, le=1000, description="Limit number of products"),
    search: Optional[str] = Query(None, description="Search in name or description"),
    db: Session = Depends(get_db),
):
    return crud.list_products(db, skip=skip, limit=limit, search=search)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: UUID, db: Session = Depends(get_db)):
    product = crud.get_product(db, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(product_id: UUID, db: Session = Depends(get_db)):
    if not crud.delete_product(db, product_id):
        raise NotFoundError("Product not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
