# creditbook/api/credits/models.py
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


# --- Modelos Pydantic (Cliente) ---
class Client(BaseModel):
    id: str
    name: str
    phone: str
    total_debt: float
    amount_paid: float
    remaining_balance: float
    payment_due_date: datetime | None = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ClientCreate(BaseModel):
    name: str
    phone: str
    total_debt: float
    payment_due_date: datetime | date | None = None


class ClientUpdate(ClientCreate):
    pass


class ClientAlert(Client):
    days_until_due: int
    is_overdue: bool


class CreditSummary(BaseModel):
    total_outstanding: float
    client_count: int


# --- Modelos Pydantic (Pagos) ---
class PaymentCreate(BaseModel):
    amount: float
    notes: str | None = None


class Payment(BaseModel):
    id: str
    client_id: str
    date: datetime
    amount: float
    notes: str | None = None
    model_config = ConfigDict(from_attributes=True)


class PaymentPage(BaseModel):
    payments: list[Payment]
    next_cursor: str | None = None
