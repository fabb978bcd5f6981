import datetime as dt
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from .models import Order, Product, StockItem

TERMINAL_STATUSES = ("completed", "expired", "cancelled")


def get_product(db: Session, product_id: int) -> Optional[Tuple[Product, int]]:
    """Return the product together with its count of unsold stock items."""
    row = (
        db.query(Product, func.count(StockItem.id))
        .outerjoin(StockItem, (StockItem.product_id == Product.id) & StockItem.sold.is_(False))
        .filter(Product.id == product_id)
        .group_by(Product.id)
        .first()
    )
    if row is None:
        return None
    product, available = row
    return product, int(available or 0)


def create_order(
    db: Session,
    *,
    user_id: int,
    product_id: int,
    chat_id: int,
    reference_token: str,
    quantity: int,
    total_price: int,
) -> Order:
    db_order = Order(
        user_id=user_id,
        product_id=product_id,
        chat_id=chat_id,
        reference_token=reference_token,
        quantity=quantity,
        total_price=total_price,
        status="pending",
        created_at=dt.datetime.now(dt.timezone.utc),
    )
    db.add(db_order)
    db.commit()
    db.refresh(db_order)
    return db_order


def get_order(db: Session, order_id: int) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id).first()


def set_status(db: Session, order_id: int, new_status: str) -> bool:
    """Move a pending order to a terminal status.

    Re-writing the status the row already holds is a no-op and reports True.
    Leaving a terminal status is refused.
    """
    if new_status not in TERMINAL_STATUSES:
        raise ValueError(f"not a terminal status: {new_status}")

    updated = (
        db.query(Order)
        .filter(Order.id == order_id, Order.status == "pending")
        .update({Order.status: new_status}, synchronize_session=False)
    )
    db.commit()
    if updated:
        return True

    current = db.query(Order.status).filter(Order.id == order_id).scalar()
    return current == new_status


def mark_paid(db: Session, order_id: int) -> bool:
    """Stamp paid_at on a pending order before any stock is claimed for it."""
    updated = (
        db.query(Order)
        .filter(Order.id == order_id, Order.status == "pending", Order.paid_at.is_(None))
        .update({Order.paid_at: dt.datetime.now(dt.timezone.utc)}, synchronize_session=False)
    )
    db.commit()
    return updated == 1


def load_pending(db: Session) -> List[Order]:
    """Orders still awaiting payment. Paid orders left unresolved stay out."""
    return (
        db.query(Order)
        .filter(
            Order.status == "pending",
            Order.reference_token.isnot(None),
            Order.paid_at.is_(None),
        )
        .order_by(Order.id)
        .all()
    )


def get_orders_by_user(db: Session, user_id: int, limit: int = 20) -> List[Dict]:
    """Buyer history, newest first, with the credentials each order delivered."""
    rows = (
        db.query(Order, Product.name)
        .join(Product, Order.product_id == Product.id)
        .filter(Order.user_id == user_id)
        .order_by(Order.id.desc())
        .limit(limit)
        .all()
    )
    order_ids = [order.id for order, _ in rows]
    delivered: Dict[int, List[str]] = {oid: [] for oid in order_ids}
    if order_ids:
        items = (
            db.query(StockItem.order_id, StockItem.payload)
            .filter(StockItem.order_id.in_(order_ids))
            .order_by(StockItem.id)
            .all()
        )
        for oid, payload in items:
            delivered[oid].append(payload)

    return [
        {
            "id": order.id,
            "status": order.status,
            "product_name": product_name,
            "quantity": order.quantity,
            "total_price": order.total_price,
            "created_at": order.created_at,
            "delivered": delivered[order.id],
        }
        for order, product_name in rows
    ]


def get_recent_orders(db: Session, limit: int = 20) -> List[Dict]:
    rows = (
        db.query(Order, Product.name)
        .join(Product, Order.product_id == Product.id)
        .order_by(Order.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": order.id,
            "user_id": order.user_id,
            "status": order.status,
            "product_name": product_name,
            "quantity": order.quantity,
            "total_price": order.total_price,
            "created_at": order.created_at,
        }
        for order, product_name in rows
    ]


def get_revenue_summary(db: Session, now: Optional[dt.datetime] = None) -> Dict:
    now = now or dt.datetime.now(dt.timezone.utc)
    day_start = now.astimezone(dt.timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    completed = Order.status == "completed"
    total_orders, total_revenue, today_revenue = db.query(
        func.count(case((completed, 1))),
        func.coalesce(func.sum(case((completed, Order.total_price), else_=0)), 0),
        func.coalesce(
            func.sum(case(((completed & (Order.created_at >= day_start)), Order.total_price), else_=0)),
            0,
        ),
    ).one()

    by_status = dict(db.query(Order.status, func.count(Order.id)).group_by(Order.status).all())

    return {
        "total_orders": int(total_orders or 0),
        "total_revenue": int(total_revenue or 0),
        "today_revenue": int(today_revenue or 0),
        "by_status": {status: int(by_status.get(status, 0)) for status in ("pending",) + TERMINAL_STATUSES},
    }
