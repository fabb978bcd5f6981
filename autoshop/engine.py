from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections import Counter
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from . import config, crud, stock
from .errors import InsufficientStock, InvalidQuantity, ProductNotFound
from .models import Order
from .notifications import (
    ORDER_COMPLETED,
    ORDER_EXPIRED,
    ORDER_PAID_ALERT,
    ORDER_SHORTFALL_ALERT,
    Notifier,
)
from .payment_gateway import build_payment_instructions
from .registry import PendingOrder, PendingRegistry
from .schemas import CheckResult, CheckStatus, OrderStatus, OrderTicket
from .tokens import generate_reference_token

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands timestamps back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _to_pending(order: Order) -> PendingOrder:
    return PendingOrder(
        order_id=order.id,
        user_id=order.user_id,
        chat_id=order.chat_id,
        product_id=order.product_id,
        quantity=order.quantity,
        total_price=order.total_price,
        reference_token=order.reference_token,
        created_at=_as_utc(order.created_at),
    )


def _product_snapshot(db: Session, product_id: int) -> Optional[Tuple[str, int, int]]:
    found = crud.get_product(db, product_id)
    if found is None:
        return None
    product, available = found
    return product.name, int(product.price), available


def _insert_order(db: Session, **fields: Any) -> PendingOrder:
    return _to_pending(crud.create_order(db, **fields))


def _claim_payload(db: Session, product_id: int, buyer_id: int, order_id: int) -> Optional[str]:
    item = stock.claim_one(db, product_id, buyer_id, order_id)
    return item.payload if item is not None else None


class ReconciliationEngine:
    """Owns the pending orders and turns observed payments into deliveries.

    Store, gateway and notifier calls all run in worker threads and are
    awaited, so a sweep and a buyer's recheck can interleave at any of them.
    Per-order exclusion comes from the registry's in-flight markers, and an
    order is popped from the registry before any stock is claimed for it.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway,
        notifier: Notifier,
        *,
        admin_ids: Optional[Iterable[int]] = None,
        order_timeout_seconds: Optional[int] = None,
        sweep_interval_seconds: Optional[int] = None,
        max_quantity: Optional[int] = None,
        clock: Callable[[], dt.datetime] = _utcnow,
        registry: Optional[PendingRegistry] = None,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier
        self.admin_ids = list(config.ADMIN_IDS if admin_ids is None else admin_ids)
        self.order_timeout = dt.timedelta(
            seconds=config.ORDER_TIMEOUT_SECONDS if order_timeout_seconds is None else order_timeout_seconds
        )
        self.sweep_interval = config.SWEEP_INTERVAL_SECONDS if sweep_interval_seconds is None else sweep_interval_seconds
        self.max_quantity = config.MAX_QUANTITY_PER_ORDER if max_quantity is None else max_quantity
        self.clock = clock
        self.registry = registry or PendingRegistry()
        self._sweeper: Optional[asyncio.Task] = None

    # -----------------------------
    # Plumbing
    # -----------------------------

    async def _db(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def _run() -> Any:
            db = self.session_factory()
            try:
                return fn(db, *args, **kwargs)
            finally:
                db.close()

        return await asyncio.to_thread(_run)

    async def _notify(self, recipient: int, event: str, payload: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self.notifier.notify, recipient, event, payload)
        except Exception:
            logger.exception("Failed to publish %s to %s", event, recipient)

    async def _notify_admins(self, event: str, payload: Dict[str, Any]) -> None:
        for admin_id in self.admin_ids:
            await self._notify(admin_id, event, payload)

    @property
    def pending_count(self) -> int:
        return len(self.registry)

    # -----------------------------
    # Startup recovery
    # -----------------------------

    def load_pending(self) -> int:
        """Rebuild the registry from pending rows in the store."""
        db = self.session_factory()
        try:
            orders = [_to_pending(o) for o in crud.load_pending(db)]
        finally:
            db.close()

        for order in orders:
            self.registry.add(order)
        logger.info("Loaded %d pending orders from the store", len(orders))
        return len(orders)

    # -----------------------------
    # Lifecycle operations
    # -----------------------------

    async def create_order(self, buyer_id: int, chat_id: int, product_id: int, quantity: int) -> OrderTicket:
        if quantity < 1:
            raise InvalidQuantity("Quantity must be at least 1")
        if quantity > self.max_quantity:
            raise InvalidQuantity(f"You can buy at most {self.max_quantity} items per order")

        snapshot = await self._db(_product_snapshot, product_id)
        if snapshot is None:
            raise ProductNotFound(f"Product {product_id} does not exist")
        name, price, available = snapshot
        if available < quantity:
            raise InsufficientStock(f"Not enough stock for '{name}'. Available: {available}, requested: {quantity}")

        total_price = price * quantity
        token = self.registry.reserve_token(generate_reference_token)
        try:
            pending = await self._db(
                _insert_order,
                user_id=buyer_id,
                product_id=product_id,
                chat_id=chat_id,
                reference_token=token,
                quantity=quantity,
                total_price=total_price,
            )
        except Exception:
            self.registry.release_token(token)
            raise
        self.registry.add(pending)

        logger.info(
            "Order #%s created: buyer=%s product=%s x%s total=%s token=%s",
            pending.order_id, buyer_id, product_id, quantity, total_price, token,
        )
        expires_at = pending.created_at + self.order_timeout
        return OrderTicket(
            order_id=pending.order_id,
            reference_token=token,
            product_name=name,
            quantity=quantity,
            total_price=total_price,
            payment=build_payment_instructions(total_price, token, expires_at),
        )

    async def check_order(self, order_id: int) -> CheckResult:
        """Run one reconciliation attempt; shared by the sweep and buyer rechecks."""
        if order_id not in self.registry:
            return CheckResult(order_id=order_id, status=CheckStatus.NOT_FOUND)

        if not self.registry.try_acquire(order_id):
            logger.debug("Order #%s is already being resolved", order_id)
            return CheckResult(order_id=order_id, status=CheckStatus.PROCESSING)

        try:
            return await self._resolve(order_id)
        finally:
            self.registry.release(order_id)

    async def cancel_order(self, order_id: int, buyer_id: Optional[int] = None) -> bool:
        order = self.registry.get(order_id)
        if order is None:
            return False
        if buyer_id is not None and order.user_id != buyer_id:
            logger.warning("Buyer %s tried to cancel order #%s owned by %s", buyer_id, order_id, order.user_id)
            return False
        if self.registry.pop(order_id) is None:
            return False

        await self._db(crud.set_status, order_id, OrderStatus.CANCELLED.value)
        logger.info("Order #%s cancelled", order_id)
        return True

    # -----------------------------
    # Resolution
    # -----------------------------

    async def _resolve(self, order_id: int) -> CheckResult:
        order = self.registry.get(order_id)
        if order is None:
            return CheckResult(order_id=order_id, status=CheckStatus.NOT_FOUND)

        # timeout wins over a payment that shows up in the same pass
        if order.is_expired(self.clock(), self.order_timeout):
            return await self._expire(order)

        paid = await asyncio.to_thread(self.gateway.find_match, order.reference_token, order.total_price)
        if not paid:
            return CheckResult(order_id=order_id, status=CheckStatus.STILL_PENDING)

        # claim the order before the first await of the allocation branch
        if self.registry.pop(order_id) is None:
            logger.warning("Payment matched order #%s after it left the pending set", order_id)
            return CheckResult(order_id=order_id, status=CheckStatus.NOT_FOUND)

        return await self._fulfil(order)

    async def _expire(self, order: PendingOrder) -> CheckResult:
        self.registry.pop(order.order_id)
        await self._db(crud.set_status, order.order_id, OrderStatus.EXPIRED.value)
        logger.info("Order #%s expired without payment", order.order_id)
        await self._notify(
            order.chat_id,
            ORDER_EXPIRED,
            {"order_id": order.order_id, "timeout_minutes": int(self.order_timeout.total_seconds() // 60)},
        )
        return CheckResult(order_id=order.order_id, status=CheckStatus.EXPIRED)

    async def _fulfil(self, order: PendingOrder) -> CheckResult:
        summary = {
            "order_id": order.order_id,
            "user_id": order.user_id,
            "product_id": order.product_id,
            "quantity": order.quantity,
            "total_price": order.total_price,
        }

        delivered = []
        try:
            await self._db(crud.mark_paid, order.order_id)
            for _ in range(order.quantity):
                payload = await self._db(_claim_payload, order.product_id, order.user_id, order.order_id)
                if payload is None:
                    break
                delivered.append(payload)
            if len(delivered) == order.quantity:
                await self._db(crud.set_status, order.order_id, OrderStatus.COMPLETED.value)
        except Exception:
            logger.exception(
                "Order #%s paid but fulfilment failed after %d of %d items; left unresolved",
                order.order_id, len(delivered), order.quantity,
            )
            await self._notify_admins(ORDER_SHORTFALL_ALERT, {**summary, "delivered_count": len(delivered)})
            raise

        if len(delivered) < order.quantity:
            logger.error(
                "Order #%s paid but only %d of %d items could be allocated; left unresolved",
                order.order_id, len(delivered), order.quantity,
            )
            await self._notify_admins(ORDER_SHORTFALL_ALERT, {**summary, "delivered_count": len(delivered)})
            return CheckResult(order_id=order.order_id, status=CheckStatus.SHORTFALL, delivered=delivered)

        logger.info("Order #%s completed with %d items", order.order_id, len(delivered))
        await self._notify(order.chat_id, ORDER_COMPLETED, {**summary, "delivered": delivered})
        await self._notify_admins(ORDER_PAID_ALERT, summary)
        return CheckResult(order_id=order.order_id, status=CheckStatus.PAID, delivered=delivered)

    # -----------------------------
    # Sweep
    # -----------------------------

    async def sweep(self) -> Counter:
        outcomes: Counter = Counter()
        for order_id in self.registry.order_ids():
            try:
                result = await self.check_order(order_id)
            except Exception:
                logger.exception("Sweep failed on order #%s", order_id)
                outcomes["error"] += 1
                continue
            outcomes[result.status.value] += 1

        if outcomes:
            logger.info("Sweep finished: %s", dict(outcomes))
        return outcomes

    async def _run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Sweep pass crashed")

    def start(self) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._run_sweeper(), name="order-sweeper")
        logger.info("Sweeper started (every %ss, timeout %s)", self.sweep_interval, self.order_timeout)

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
