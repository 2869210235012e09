"""
Owner Model

Local record of an authenticated identity-provider subject.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, String

from ..database import Base


class Owner(Base):
    """
    Account owner.

    The row doubles as the per-owner lock target: quota checks and
    generation starts take ``SELECT ... FOR UPDATE`` on it.
    """

    __tablename__ = "owners"

    id = Column(String(255), primary_key=True)  # identity provider subject
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Owner {self.id}>"
