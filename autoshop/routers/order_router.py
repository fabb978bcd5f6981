import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..database import get_db, get_engine
from ..engine import ReconciliationEngine
from ..errors import OrderRejected

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/orders",
    tags=["Order Service"]
)


@router.post("/", response_model=schemas.OrderTicket, status_code=status.HTTP_201_CREATED)
async def create_order(
    buyer_id: int = Form(..., gt=0, description="Buyer (chat user) ID"),
    chat_id: int = Form(..., description="Chat to deliver to"),
    product_id: int = Form(..., gt=0, description="Product ID"),
    quantity: int = Form(..., description="Product quantity"),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Reserve a product for the buyer and return the transfer instructions.

    Stock is not deducted here; items are claimed once the payment shows up.
    """

    try:
        return await engine.create_order(buyer_id, chat_id, product_id, quantity)
    except OrderRejected as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"error": e.code, "message": e.message},
        )
    except Exception:
        logger.exception("Failed to create order for buyer %s", buyer_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create order. Please try again.",
        )


@router.post("/{order_id:int}/check", response_model=schemas.CheckResult)
async def check_order(
    order_id: int,
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Buyer-initiated payment recheck.

    `processing` means another check of the same order is running; retry shortly.
    """

    try:
        return await engine.check_order(order_id)
    except Exception:
        logger.exception("Payment check failed for order #%s", order_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not check the payment right now. Please try again.",
        )


@router.post("/{order_id:int}/cancel", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_order(
    order_id: int,
    buyer_id: Optional[int] = Form(None, description="Only cancel if the order belongs to this buyer"),
    engine: ReconciliationEngine = Depends(get_engine),
):
    cancelled = await engine.cancel_order(order_id, buyer_id=buyer_id)
    if not cancelled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {order_id} is not pending",
        )
    return None


@router.get("/history/{buyer_id:int}", response_model=schemas.OrderHistoryResponse)
def get_order_history(
    buyer_id: int,
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):

    orders = crud.get_orders_by_user(db=db, user_id=buyer_id, limit=limit)
    return {"orders": orders, "total": len(orders)}
