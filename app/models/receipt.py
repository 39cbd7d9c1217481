# app/models/receipt.py
"""Receipts — proof of a collected, non-zero payment. At most one per passage."""

from sqlalchemy import Column, Integer, String, DateTime, Numeric, Text, ForeignKey
from app.database import Base


class Receipt(Base):
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    receipt_number = Column(String(30), unique=True, nullable=False)
    vehicle_passage_id = Column(Integer, ForeignKey("vehicle_passages.id"), unique=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(30), default="cash", nullable=False)
    issued_by = Column(Integer)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text)

    def __repr__(self):
        return f"<Receipt {self.receipt_number} passage={self.vehicle_passage_id} amount={self.amount}>"
