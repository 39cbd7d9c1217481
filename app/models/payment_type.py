# app/models/payment_type.py
"""Payment policy tags: Cash | Bundle | Exemption. Seeded once, never created on the fly."""

from sqlalchemy import Column, Integer, String, Boolean
from app.database import Base


class PaymentType(Base):
    __tablename__ = "payment_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), unique=True, nullable=False)
    description = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<PaymentType {self.name}>"
