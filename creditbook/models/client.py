# creditbook/models/client.py
"""
Client model for store-credit debtors.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp, the form every datetime column is written in."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Client(SQLModel, table=True):
    """
    Client model representing a debtor.

    Fields:
    - id: Opaque uuid hex, immutable
    - name: Display name (required)
    - phone: Contact phone (required)
    - total_debt: Original amount owed, never decremented by payments
    - amount_paid: Cumulative sum of applied payments
    - remaining_balance: total_debt - amount_paid, stored for listing/sorting
    - payment_due_date: Optional due date (UTC)
    - created_at / updated_at: Bookkeeping timestamps (UTC)
    """

    __tablename__ = "credit_clients"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(nullable=False)
    phone: str = Field(nullable=False)
    total_debt: float = Field(default=0.0, nullable=False)
    amount_paid: float = Field(default=0.0, nullable=False)
    remaining_balance: float = Field(default=0.0, nullable=False, index=True)
    payment_due_date: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
