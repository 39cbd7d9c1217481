# app/models/account.py
"""
Customer accounts and their bundle subscriptions.
Only the parts the Pricing Engine reads live here; subscription
lifecycle (purchase, renewal, cancellation) belongs to the admin layer.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from app.database import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    account_number = Column(String(50), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Account {self.account_number}>"


class AccountVehicle(Base):
    __tablename__ = "account_vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    is_primary = Column(Boolean, default=True, nullable=False)


class BundleSubscription(Base):
    __tablename__ = "bundle_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    bundle_name = Column(String(200))
    start_datetime = Column(DateTime(timezone=True), nullable=False)
    end_datetime = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active | expired | cancelled

    def __repr__(self):
        return f"<BundleSubscription {self.id} account={self.account_id} status={self.status}>"
