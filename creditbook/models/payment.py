# creditbook/models/payment.py
"""
Payment model: one repayment against a client's debt.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .client import new_id, utcnow


class Payment(SQLModel, table=True):
    """
    Payment owned by exactly one client. Immutable once written.

    Fields:
    - id: uuid hex generated at insertion
    - client_id: Owning client (required)
    - date: Payment timestamp (UTC), pagination order key
    - amount: Positive amount
    - notes: Optional free text
    - idempotency_key: Optional caller key, unique per client
    """

    __tablename__ = "credit_payments"
    __table_args__ = (
        UniqueConstraint("client_id", "idempotency_key", name="uq_payment_idempotency"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    client_id: str = Field(foreign_key="credit_clients.id", nullable=False, index=True)
    date: datetime = Field(default_factory=utcnow, nullable=False, index=True)
    amount: float = Field(nullable=False)
    notes: Optional[str] = Field(default=None)
    idempotency_key: Optional[str] = Field(default=None)
