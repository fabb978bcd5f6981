from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# Define order status enum
class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Outcome of one reconciliation attempt on a single order
class CheckStatus(str, Enum):
    NOT_FOUND = "not_found"
    PROCESSING = "processing"
    EXPIRED = "expired"
    STILL_PENDING = "still_pending"
    PAID = "paid"
    SHORTFALL = "shortfall"


class PaymentInstructions(BaseModel):
    bank_name: str
    bank_account: str
    bank_owner: str
    memo: str
    amount: int
    qr_url: str
    expires_at: str


class OrderTicket(BaseModel):
    """Returned to the chat bridge right after an order is registered"""
    order_id: int
    reference_token: str
    product_name: str
    quantity: int
    total_price: int
    payment: PaymentInstructions


class CheckResult(BaseModel):
    order_id: int
    status: CheckStatus
    delivered: List[str] = []


class OrderOut(BaseModel):
    id: int
    user_id: int
    chat_id: int
    product_id: int
    quantity: int = Field(..., gt=0)
    total_price: int
    reference_token: Optional[str] = None
    status: OrderStatus
    created_at: datetime
    paid_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OrderHistoryItem(BaseModel):
    id: int
    status: OrderStatus
    product_name: str
    quantity: int
    total_price: int
    created_at: datetime
    delivered: List[str] = []


class RecentOrderItem(BaseModel):
    id: int
    user_id: int
    status: OrderStatus
    product_name: str
    quantity: int
    total_price: int
    created_at: datetime


# Schema for API responses
class OrderHistoryResponse(BaseModel):
    orders: List[OrderHistoryItem]
    total: int


class RecentOrdersResponse(BaseModel):
    orders: List[RecentOrderItem]
    limit: int


class RevenueSummary(BaseModel):
    total_orders: int
    total_revenue: int
    today_revenue: int
    by_status: Dict[str, int]
