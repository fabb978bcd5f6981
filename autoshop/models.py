from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    # minor currency unit (VND has no fractional part)
    price = Column(Integer, nullable=False)
    description = Column(Text)


class StockItem(Base):
    """A single deliverable credential.

    Rows go from unsold to sold exactly once and are never deleted afterwards.
    """

    __tablename__ = "stock"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    payload = Column(Text, nullable=False)
    sold = Column(Boolean, nullable=False, default=False, index=True)
    buyer_id = Column(Integer, nullable=True)
    order_id = Column(Integer, nullable=True, index=True)
    sold_at = Column(DateTime(timezone=True), nullable=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    chat_id = Column(Integer, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    total_price = Column(Integer, nullable=False)
    reference_token = Column(String(16), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    # set once a matching payment is seen; such rows are never reloaded as pending
    paid_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
