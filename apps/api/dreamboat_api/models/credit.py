"""
Credit Model

One purchase entitles its owner to exactly one full generation.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)

from ..database import Base


class CreditStatus(str, Enum):
    UNREDEEMED = "unredeemed"
    REDEEMED = "redeemed"


class PurchaseStore(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    STRIPE = "stripe"
    MANUAL = "manual"


class PurchaseCredit(Base):
    """
    Purchase credit model.

    ``(store, external_transaction_id)`` is unique so a store transaction
    can mint at most one credit. ``batch_id`` is unique so a credit can
    back at most one batch.
    """

    __tablename__ = "purchase_credits"
    __table_args__ = (
        UniqueConstraint("store", "external_transaction_id", name="uq_credit_store_txn"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(255), ForeignKey("owners.id"), nullable=False, index=True)
    store = Column(String(20), nullable=False)
    external_transaction_id = Column(String(255), nullable=False)
    product_id = Column(String(255), nullable=True)
    status = Column(String(20), default=CreditStatus.UNREDEEMED.value, nullable=False, index=True)
    amount_cents = Column(Integer, nullable=True)
    currency = Column(String(10), nullable=True)

    batch_id = Column(Uuid, nullable=True, unique=True)
    redeemed_at = Column(DateTime, nullable=True)
    restored_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<PurchaseCredit {self.id} {self.store}:{self.external_transaction_id} {self.status}>"
