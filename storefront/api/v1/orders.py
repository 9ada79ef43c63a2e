from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, selectinload

from storefront.api.deps import get_current_user_id
from storefront.core.exceptions import OrderNotFound
from storefront.db.session import get_db
from storefront.models.order import Order
from storefront.schemas.order import OrderResponse
from storefront.utils.response import success

router = APIRouter()


@router.get("/{order_id}")
def get_order(
    order_id: str,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Get the buyer's own order snapshot"""
    order = (
        db.query(Order)
        .options(selectinload(Order.items), selectinload(Order.shipping))
        .filter(Order.id == order_id, Order.user_id == user_id)
        .first()
    )
    if not order:
        raise OrderNotFound()

    return success(data=OrderResponse.model_validate(order).model_dump())
