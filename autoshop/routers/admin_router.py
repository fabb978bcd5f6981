from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_admin
from ..database import get_db

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(get_current_admin)],
)


@router.get("/orders", response_model=schemas.RecentOrdersResponse)
def get_recent_orders(
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):

    return {"orders": crud.get_recent_orders(db=db, limit=limit), "limit": limit}


@router.get("/orders/{order_id:int}", response_model=schemas.OrderOut)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
):

    db_order = crud.get_order(db=db, order_id=order_id)
    if not db_order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order with id {order_id} not found"
        )
    return db_order


@router.get("/revenue", response_model=schemas.RevenueSummary)
def get_revenue(db: Session = Depends(get_db)):
    return crud.get_revenue_summary(db=db)
