import datetime as dt
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from .models import StockItem


def count_available(db: Session, product_id: int) -> int:
    return (
        db.query(StockItem)
        .filter(StockItem.product_id == product_id, StockItem.sold.is_(False))
        .count()
    )


def allocate_one(db: Session, product_id: int) -> Optional[StockItem]:
    """Return an unsold item for the product without claiming it."""
    return (
        db.query(StockItem)
        .filter(StockItem.product_id == product_id, StockItem.sold.is_(False))
        .order_by(StockItem.id)
        .first()
    )


def mark_sold(db: Session, stock_item_id: int, buyer_id: int, order_id: Optional[int] = None) -> bool:
    """Flip an item to sold.

    Conditional on the row still being unsold, so of two concurrent claimers
    only one sees True. Calling it again on a sold item changes nothing.
    """
    updated = (
        db.query(StockItem)
        .filter(StockItem.id == stock_item_id, StockItem.sold.is_(False))
        .update(
            {
                StockItem.sold: True,
                StockItem.buyer_id: buyer_id,
                StockItem.order_id: order_id,
                StockItem.sold_at: dt.datetime.now(dt.timezone.utc),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def claim_one(db: Session, product_id: int, buyer_id: int, order_id: Optional[int] = None) -> Optional[StockItem]:
    """Allocate and mark sold one item, or None when the product is sold out."""
    while True:
        item = allocate_one(db, product_id)
        if item is None:
            return None
        if mark_sold(db, item.id, buyer_id, order_id):
            db.refresh(item)
            return item
        # lost the row to another claimer; the next candidate is a different item


def add_stock(db: Session, product_id: int, payloads: Iterable[str]) -> int:
    added = 0
    for payload in payloads:
        payload = (payload or "").strip()
        if not payload:
            continue
        db.add(StockItem(product_id=product_id, payload=payload, sold=False))
        added += 1
    db.commit()
    return added
