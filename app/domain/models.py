from sqlalchemy import BigInteger, Boolean, Column, Float, Integer, JSON, String
from app.infrastructure.database import Base

class ProductRecord(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Float, default=0.0)
    category = Column(String, default="")
    image_url = Column(String, default="")
    description = Column(String, nullable=True)
    barcode = Column(String, nullable=True)
    stock = Column(Integer, nullable=True)  # NULL = not stock-tracked
    is_available = Column(Boolean, default=True)
    # [{"product_id": ..., "quantity": ...}]; non-empty means composite
    combo_items = Column(JSON, default=list)
    points_price = Column(Integer, nullable=True)


class TransactionRecord(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    order_number = Column(String, index=True)
    customer_name = Column(String, default="")
    timestamp = Column(BigInteger, index=True)  # epoch ms

    # Denormalized line items, so catalog edits never rewrite history
    items = Column(JSON)

    subtotal = Column(Float, default=0.0)
    discount = Column(Float, default=0.0)
    total = Column(Float, default=0.0)
    payment_method = Column(String)
    amount_paid = Column(Float, nullable=True)
    change = Column(Float, nullable=True)
    seller_name = Column(String, nullable=True)
    status = Column(String, index=True)  # pending_payment, completed, cancelled
    kitchen_status = Column(String)  # pending, done
    customer_id = Column(String, nullable=True)
    points_earned = Column(Integer, nullable=True)
    points_redeemed = Column(Integer, nullable=True)


class CustomerRecord(Base):
    __tablename__ = "customers"

    id = Column(String, primary_key=True)
    phone = Column(String, unique=True, index=True)
    name = Column(String, default="")
    points = Column(Integer, default=0)


class StaffUserRecord(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(String)
    password = Column(String)
    role = Column(String)
