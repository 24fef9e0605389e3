# creditbook/services/ledger_service.py
"""
Credit ledger service: client balances and payment history.

Balances are only ever changed inside a store transaction keyed on the
client document, so ``remaining_balance == total_debt - amount_paid`` and
``amount_paid == sum(payments)`` hold after every committed call.
"""
import base64
import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..core.errors import NotFoundError, StoreError, ValidationError
from ..db.store import DocumentStore, as_utc, clients_path, payments_path
from ..models.client import new_id, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 15
DEFAULT_ALERT_WINDOW_DAYS = 7
# Half a cent: money figures closer than this are the same amount
MONEY_TOLERANCE = 0.005
_CURSOR_SEPARATOR = "|"


# --- Input normalization ---
def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required.")
    return value.strip()


def _to_number(value: Any, field: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number.")
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise ValidationError(f"{field} must be a number.")
    else:
        raise ValidationError(f"{field} must be a number.")
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number.")
    return number


def _to_utc(value: Any, field: str) -> Optional[datetime]:
    """Normalize a date or datetime to aware UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValidationError(f"{field} must be a date or datetime.")


def same_money(a: float, b: float) -> bool:
    """Equal to the cent. Float sums differ in the last bits depending on order."""
    return math.isclose(a, b, rel_tol=0.0, abs_tol=MONEY_TOLERANCE)


# --- Cursors ---
def encode_cursor(payment: Dict[str, Any]) -> str:
    """Opaque cursor for the position right after ``payment``."""
    raw = f"{payment['date'].isoformat()}{_CURSOR_SEPARATOR}{payment['id']}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[datetime, str]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        stamp, payment_id = raw.split(_CURSOR_SEPARATOR, 1)
        return as_utc(datetime.fromisoformat(stamp)), payment_id
    except (ValueError, UnicodeError, AttributeError):
        raise ValidationError("Invalid pagination cursor.")


class LedgerService:
    """
    Service layer for the client credit ledger.
    """

    def __init__(self, store: DocumentStore):
        """
        Initialize with a document store.

        Args:
            store: DocumentStore instance
        """
        self.store = store

    # --- Clients ---
    def get_clients(self) -> List[Dict[str, Any]]:
        """All clients, highest remaining balance first. Empty on store failure."""
        try:
            return self.store.list_documents(
                clients_path(), order_by="remaining_balance", descending=True
            )
        except StoreError as e:
            logger.warning(f"Could not load clients: {e}")
            return []

    def get_client(self, client_id: str) -> Dict[str, Any]:
        client = self.store.get_document(clients_path(), client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found.")
        return client

    def add_client(
        self,
        name: str,
        phone: str,
        total_debt: Any,
        due_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Create a client owing ``total_debt`` with nothing paid yet.

        Raises:
            ValidationError: empty name/phone or invalid total_debt.
        """
        name = _require_text(name, "name")
        phone = _require_text(phone, "phone")
        total_debt = _to_number(total_debt, "total_debt")
        if total_debt < 0:
            raise ValidationError("total_debt cannot be negative.")

        now = utcnow()
        client_id = new_id()
        client = self.store.set_document(
            clients_path(),
            client_id,
            {
                "name": name,
                "phone": phone,
                "total_debt": total_debt,
                "amount_paid": 0.0,
                "remaining_balance": total_debt,
                "payment_due_date": _to_utc(due_date, "due_date"),
                "created_at": now,
                "updated_at": now,
            },
        )
        logger.info(f"Client {client_id} created with debt {total_debt}")
        return client

    def update_client(
        self,
        client_id: str,
        name: str,
        phone: str,
        total_debt: Any,
        due_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Overwrite the editable fields and recompute the remaining balance.
        ``amount_paid`` is preserved; a negative balance means the client
        is in credit and is accepted.
        """
        name = _require_text(name, "name")
        phone = _require_text(phone, "phone")
        total_debt = _to_number(total_debt, "total_debt")
        if total_debt < 0:
            raise ValidationError("total_debt cannot be negative.")
        due = _to_utc(due_date, "due_date")

        def apply(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None:
                return None
            return {
                "name": name,
                "phone": phone,
                "total_debt": total_debt,
                "remaining_balance": total_debt - current["amount_paid"],
                "payment_due_date": due,
                "updated_at": utcnow(),
            }

        client = self.store.transactional_update(clients_path(), client_id, apply)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found.")
        return client

    def delete_client(self, client_id: str) -> bool:
        """
        Remove a client together with its payment history in one transaction.
        Deleting an unknown id is a no-op.

        Returns:
            True when a client was removed.
        """
        with self.store.transaction():
            removed_payments = self.store.delete_collection(payments_path(client_id))
            existed = self.store.delete_document(clients_path(), client_id)
        if existed:
            logger.info(f"Client {client_id} deleted with {removed_payments} payments")
        else:
            logger.debug(f"Delete of unknown client {client_id} ignored")
        return existed

    # --- Payments ---
    def add_payment(
        self,
        client_id: str,
        amount: Any,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply a payment to a client's balance and record it, atomically.

        Args:
            client_id: Client paying.
            amount: Positive, finite amount.
            notes: Optional free text.
            idempotency_key: Optional caller key. Re-sending a key already
                used for this client returns the original payment without
                charging twice.

        Returns:
            The payment record, with ``replayed`` set when an earlier
            payment was returned for ``idempotency_key``.

        Raises:
            ValidationError: amount is not a positive finite number, or
                ``idempotency_key`` was already used for a different amount.
            NotFoundError: client does not exist.
        """
        amount = _to_number(amount, "amount")
        if amount <= 0:
            raise ValidationError("amount must be greater than 0.")
        if isinstance(notes, str):
            notes = notes.strip() or None

        recorded: Dict[str, Any] = {}

        def apply(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None:
                return None
            if idempotency_key:
                previous = self.store.find_one(
                    payments_path(client_id), idempotency_key=idempotency_key
                )
                if previous is not None:
                    if not same_money(previous["amount"], amount):
                        raise ValidationError(
                            f"Idempotency key {idempotency_key} was used for a different amount."
                        )
                    recorded.update(previous, replayed=True)
                    return None

            new_amount_paid = current["amount_paid"] + amount
            payment = self.store.set_document(
                payments_path(client_id),
                new_id(),
                {
                    "date": utcnow(),
                    "amount": amount,
                    "notes": notes,
                    "idempotency_key": idempotency_key,
                },
            )
            recorded.update(payment, replayed=False)
            return {
                "amount_paid": new_amount_paid,
                "remaining_balance": current["total_debt"] - new_amount_paid,
                "updated_at": utcnow(),
            }

        client = self.store.transactional_update(clients_path(), client_id, apply)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found.")

        if recorded["replayed"]:
            logger.info(f"Payment {recorded['id']} replayed for key {idempotency_key}")
        else:
            logger.info(
                f"Payment {recorded['id']} of {amount} applied to client {client_id}, "
                f"remaining {client['remaining_balance']}"
            )
        return recorded

    def get_payment_history(
        self,
        client_id: str,
        cursor: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """
        One page of a client's payments, newest first.

        ``cursor`` is the ``next_cursor`` of the previous page (``None`` for
        the first page). ``next_cursor`` is ``None`` once nothing remains.
        A store failure yields an empty page.
        """
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise ValidationError("page_size must be a positive integer.")
        boundary = decode_cursor(cursor) if cursor else None

        try:
            rows = self.store.query_range(
                payments_path(client_id),
                "date",
                less_than=boundary,
                tie_breaker="id",
                limit=page_size + 1,
                descending=True,
            )
        except StoreError as e:
            logger.warning(f"Could not load payment history for {client_id}: {e}")
            return {"payments": [], "next_cursor": None}

        payments = rows[:page_size]
        has_more = len(rows) > page_size
        next_cursor = encode_cursor(payments[-1]) if has_more else None
        return {"payments": payments, "next_cursor": next_cursor}

    # --- Aggregates ---
    def total_outstanding(self) -> float:
        """Raw sum of remaining balances; clients in credit subtract."""
        return self.store.sum(clients_path(), "remaining_balance")

    def payment_alerts(
        self,
        now: Optional[datetime] = None,
        window_days: int = DEFAULT_ALERT_WINDOW_DAYS,
    ) -> List[Dict[str, Any]]:
        """
        Clients still owing money whose due date is past or within
        ``window_days``, earliest due date first.
        """
        now = _to_utc(now, "now") if now is not None else utcnow()
        limit = now + timedelta(days=window_days)

        alerts = []
        for client in self.get_clients():
            due = client.get("payment_due_date")
            if client["remaining_balance"] <= 0 or due is None or due > limit:
                continue
            days_until_due = math.floor((due - now) / timedelta(days=1))
            alerts.append(
                {
                    **client,
                    "days_until_due": days_until_due,
                    "is_overdue": days_until_due < 0,
                }
            )
        alerts.sort(key=lambda c: c["payment_due_date"])
        return alerts

    def reconcile_balances(self) -> List[str]:
        """
        Recompute ``amount_paid`` from the payment history and
        ``remaining_balance`` from it, for every client.

        Returns:
            Ids of the clients whose stored figures were wrong.
        """
        repaired = []
        for client in self.store.list_documents(clients_path()):
            client_id = client["id"]

            def apply(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
                if current is None:
                    return None
                paid = self.store.sum(payments_path(client_id), "amount")
                remaining = current["total_debt"] - paid
                if same_money(current["amount_paid"], paid) and same_money(
                    current["remaining_balance"], remaining
                ):
                    return None
                repaired.append(client_id)
                return {"amount_paid": paid, "remaining_balance": remaining, "updated_at": utcnow()}

            self.store.transactional_update(clients_path(), client_id, apply)

        if repaired:
            logger.warning(f"Reconciled balances of {len(repaired)} clients: {repaired}")
        return repaired
