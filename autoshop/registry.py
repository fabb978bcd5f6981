from __future__ import annotations

import datetime as dt
import threading
from dataclasses import dataclass
from typing import Callable, Container, Dict, List, Optional, Set


@dataclass(frozen=True)
class PendingOrder:
    order_id: int
    user_id: int
    chat_id: int
    product_id: int
    quantity: int
    total_price: int
    reference_token: str
    created_at: dt.datetime

    def age(self, now: dt.datetime) -> dt.timedelta:
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=dt.timezone.utc)
        return now - created

    def is_expired(self, now: dt.datetime, timeout: dt.timedelta) -> bool:
        return self.age(now) > timeout


class PendingRegistry:
    """
    Process-local cache of orders awaiting payment.

    Holds three keyed sets behind one lock:
    - pending orders by id,
    - ids currently being resolved (the in-flight markers),
    - tokens handed out to orders whose store insert has not finished yet.

    Every method is a single critical section; callers never hold the lock
    across an await.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: Dict[int, PendingOrder] = {}
        self._in_flight: Set[int] = set()
        self._reserved_tokens: Set[str] = set()

    def add(self, order: PendingOrder) -> None:
        with self._lock:
            self._orders[order.order_id] = order
            self._reserved_tokens.discard(order.reference_token)

    def get(self, order_id: int) -> Optional[PendingOrder]:
        with self._lock:
            return self._orders.get(order_id)

    def pop(self, order_id: int) -> Optional[PendingOrder]:
        """Remove and return the order; None if another caller got there first."""
        with self._lock:
            return self._orders.pop(order_id, None)

    def __contains__(self, order_id: int) -> bool:
        with self._lock:
            return order_id in self._orders

    def __len__(self) -> int:
        with self._lock:
            return len(self._orders)

    def order_ids(self) -> List[int]:
        with self._lock:
            return list(self._orders)

    def try_acquire(self, order_id: int) -> bool:
        with self._lock:
            if order_id in self._in_flight:
                return False
            self._in_flight.add(order_id)
            return True

    def release(self, order_id: int) -> None:
        with self._lock:
            self._in_flight.discard(order_id)

    def is_in_flight(self, order_id: int) -> bool:
        with self._lock:
            return order_id in self._in_flight

    def reserve_token(self, generate: Callable[[Container[str]], str]) -> str:
        """Draw a token against every pending and reserved token and hold it.

        The hold ends when the order is added, or with release_token if the
        insert fails.
        """
        with self._lock:
            taken = {o.reference_token for o in self._orders.values()} | self._reserved_tokens
            token = generate(taken)
            self._reserved_tokens.add(token)
            return token

    def release_token(self, token: str) -> None:
        with self._lock:
            self._reserved_tokens.discard(token)
