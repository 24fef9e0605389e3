from datetime import date, datetime, timedelta, timezone

import pytest

from creditbook.core.errors import NotFoundError, StoreError, ValidationError
from creditbook.db.store import payments_path


def assert_consistent(service, client_id):
    client = service.get_client(client_id)
    paid = service.store.sum(payments_path(client_id), "amount")
    assert client["remaining_balance"] == client["total_debt"] - client["amount_paid"]
    assert client["amount_paid"] == pytest.approx(paid, abs=0.005)


# --- add_client ---


def test_add_client_starts_with_nothing_paid(service):
    client = service.add_client("Ali", "0600000000", 1000)

    assert client["total_debt"] == 1000
    assert client["amount_paid"] == 0
    assert client["remaining_balance"] == 1000
    assert client["payment_due_date"] is None
    assert service.get_client(client["id"])["name"] == "Ali"


def test_add_client_strips_text_and_accepts_numeric_strings(service):
    client = service.add_client("  Sara ", " 0611 ", "250.5")

    assert client["name"] == "Sara"
    assert client["phone"] == "0611"
    assert client["remaining_balance"] == 250.5


def test_add_client_keeps_due_date(service):
    client = service.add_client("Ali", "0600", 10, due_date=date(2026, 3, 1))
    assert client["payment_due_date"] == datetime(2026, 3, 1, tzinfo=timezone.utc)

    aware = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=1)))
    other = service.add_client("Omar", "0700", 10, due_date=aware)
    assert other["payment_due_date"] == datetime(2026, 3, 1, 11, 0, tzinfo=timezone.utc)


def test_naive_datetimes_are_taken_as_utc(service):
    client = service.add_client("Ali", "0600", 10, due_date=datetime(2026, 3, 1, 8, 0))

    assert client["payment_due_date"] == datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
    assert client["created_at"].tzinfo is not None


@pytest.mark.parametrize(
    "name, phone, debt",
    [
        ("", "0600", 10),
        ("   ", "0600", 10),
        ("Ali", "", 10),
        ("Ali", "0600", -1),
        ("Ali", "0600", "abc"),
        ("Ali", "0600", float("nan")),
        ("Ali", "0600", float("inf")),
        ("Ali", "0600", True),
        ("Ali", "0600", None),
    ],
)
def test_add_client_rejects_bad_input(service, name, phone, debt):
    with pytest.raises(ValidationError):
        service.add_client(name, phone, debt)
    assert service.get_clients() == []


# --- update_client ---


def test_update_client_preserves_amount_paid(service):
    client = service.add_client("Ali", "0600", 1000)
    service.add_payment(client["id"], 300)

    updated = service.update_client(client["id"], "Ali B", "0601", 1200, date(2026, 5, 1))

    assert updated["name"] == "Ali B"
    assert updated["phone"] == "0601"
    assert updated["amount_paid"] == 300
    assert updated["remaining_balance"] == 900
    assert updated["payment_due_date"] == datetime(2026, 5, 1, tzinfo=timezone.utc)
    assert_consistent(service, client["id"])


def test_update_client_below_amount_paid_leaves_credit(service):
    client = service.add_client("Ali", "0600", 1000)
    service.add_payment(client["id"], 800)

    updated = service.update_client(client["id"], "Ali", "0600", 500)

    assert updated["remaining_balance"] == -300


def test_update_client_clears_due_date(service):
    client = service.add_client("Ali", "0600", 10, due_date=date(2026, 1, 1))
    updated = service.update_client(client["id"], "Ali", "0600", 10)
    assert updated["payment_due_date"] is None


def test_update_unknown_client_raises_not_found(service):
    with pytest.raises(NotFoundError):
        service.update_client("missing", "Ali", "0600", 10)


def test_update_client_validates_before_touching_store(service):
    client = service.add_client("Ali", "0600", 100)
    with pytest.raises(ValidationError):
        service.update_client(client["id"], "Ali", "0600", -5)
    assert service.get_client(client["id"])["total_debt"] == 100


# --- add_payment ---


def test_payments_reduce_remaining_balance(service):
    client = service.add_client("Ali", "0600000000", 1000)

    service.add_payment(client["id"], 400)
    after_first = service.get_client(client["id"])
    assert after_first["amount_paid"] == 400
    assert after_first["remaining_balance"] == 600

    service.add_payment(client["id"], 600)
    after_second = service.get_client(client["id"])
    assert after_second["amount_paid"] == 1000
    assert after_second["remaining_balance"] == 0


def test_add_payment_returns_the_record(service, clock):
    client = service.add_client("Ali", "0600", 100)
    payment = service.add_payment(client["id"], 25, notes="  cash  ")

    assert payment["client_id"] == client["id"]
    assert payment["amount"] == 25
    assert payment["notes"] == "cash"
    assert isinstance(payment["date"], datetime)
    assert payment["replayed"] is False


@pytest.mark.parametrize("amount", [-5, 0, "x", None, float("nan"), float("inf"), False])
def test_add_payment_rejects_bad_amount(service, amount):
    client = service.add_client("Ali", "0600", 1000)

    with pytest.raises(ValidationError):
        service.add_payment(client["id"], amount)

    unchanged = service.get_client(client["id"])
    assert unchanged["amount_paid"] == 0
    assert unchanged["remaining_balance"] == 1000
    assert service.get_payment_history(client["id"])["payments"] == []


def test_add_payment_to_unknown_client_raises_not_found(service):
    with pytest.raises(NotFoundError):
        service.add_payment("missing", 10)
    assert service.get_payment_history("missing")["payments"] == []


def test_overpayment_goes_negative(service):
    client = service.add_client("Ali", "0600", 100)
    service.add_payment(client["id"], 150)
    assert service.get_client(client["id"])["remaining_balance"] == -50


def test_amount_paid_is_sum_of_payments(service, clock):
    client = service.add_client("Ali", "0600", 5000)
    amounts = [10, 250.5, 99.25, 1, 640]
    for amount in amounts:
        service.add_payment(client["id"], amount)
        assert_consistent(service, client["id"])

    assert service.get_client(client["id"])["amount_paid"] == sum(amounts)


def test_idempotency_key_applies_payment_once(service, clock):
    client = service.add_client("Ali", "0600", 1000)

    first = service.add_payment(client["id"], 200, idempotency_key="till-1-0001")
    retry = service.add_payment(client["id"], 200, idempotency_key="till-1-0001")

    assert retry["id"] == first["id"]
    assert retry["replayed"] is True
    assert service.get_client(client["id"])["amount_paid"] == 200
    assert len(service.get_payment_history(client["id"])["payments"]) == 1

    service.add_payment(client["id"], 200, idempotency_key="till-1-0002")
    assert service.get_client(client["id"])["amount_paid"] == 400


def test_idempotency_key_reused_with_other_amount_is_rejected(service, clock):
    client = service.add_client("Ali", "0600", 1000)
    service.add_payment(client["id"], 200, idempotency_key="till-1-0001")

    with pytest.raises(ValidationError):
        service.add_payment(client["id"], 250, idempotency_key="till-1-0001")

    assert service.get_client(client["id"])["amount_paid"] == 200
    assert service.get_client(client["id"])["remaining_balance"] == 800
    assert service.store.count(payments_path(client["id"])) == 1


def test_idempotency_keys_are_scoped_per_client(service, clock):
    a = service.add_client("A", "1", 100)
    b = service.add_client("B", "2", 100)

    service.add_payment(a["id"], 10, idempotency_key="same")
    service.add_payment(b["id"], 10, idempotency_key="same")

    assert service.get_client(a["id"])["amount_paid"] == 10
    assert service.get_client(b["id"])["amount_paid"] == 10


def test_failed_payment_insert_leaves_balance_untouched(service, monkeypatch):
    client = service.add_client("Ali", "0600", 1000)

    original = service.store.set_document

    def failing_set(path, doc_id, value):
        if path == payments_path(client["id"]):
            raise StoreError("disk full")
        return original(path, doc_id, value)

    monkeypatch.setattr(service.store, "set_document", failing_set)

    with pytest.raises(StoreError):
        service.add_payment(client["id"], 100)

    monkeypatch.undo()
    assert service.get_client(client["id"])["amount_paid"] == 0


# --- delete_client ---


def test_delete_client_removes_history(service, clock):
    client = service.add_client("Ali", "0600", 1000)
    service.add_payment(client["id"], 100)
    service.add_payment(client["id"], 200)

    service.delete_client(client["id"])

    with pytest.raises(NotFoundError):
        service.get_client(client["id"])
    assert service.get_payment_history(client["id"]) == {"payments": [], "next_cursor": None}
    assert service.store.count(payments_path(client["id"])) == 0


def test_delete_client_keeps_other_clients_history(service, clock):
    a = service.add_client("A", "1", 100)
    b = service.add_client("B", "2", 100)
    service.add_payment(a["id"], 10)
    service.add_payment(b["id"], 20)

    service.delete_client(a["id"])

    page = service.get_payment_history(b["id"])
    assert [p["amount"] for p in page["payments"]] == [20]


def test_delete_unknown_client_is_a_noop(service):
    assert service.delete_client("missing") is False
    assert service.delete_client("missing") is False


def test_delete_client_reports_whether_it_removed_anything(service):
    client = service.add_client("Ali", "0600", 100)

    assert service.delete_client(client["id"]) is True
    assert service.delete_client(client["id"]) is False


def test_delete_is_all_or_nothing(service, clock, monkeypatch):
    client = service.add_client("Ali", "0600", 1000)
    service.add_payment(client["id"], 100)

    def failing_delete(path, doc_id):
        raise StoreError("connection lost")

    monkeypatch.setattr(service.store, "delete_document", failing_delete)
    with pytest.raises(StoreError):
        service.delete_client(client["id"])
    monkeypatch.undo()

    assert service.get_client(client["id"])["amount_paid"] == 100
    assert len(service.get_payment_history(client["id"])["payments"]) == 1


# --- get_payment_history ---


def test_history_first_page_and_remainder(service, clock):
    client = service.add_client("Ali", "0600", 10000)
    payments = [service.add_payment(client["id"], i + 1) for i in range(20)]
    newest_first = [p["id"] for p in reversed(payments)]

    first = service.get_payment_history(client["id"], None, 15)
    assert [p["id"] for p in first["payments"]] == newest_first[:15]
    assert first["next_cursor"] is not None

    second = service.get_payment_history(client["id"], first["next_cursor"], 15)
    assert [p["id"] for p in second["payments"]] == newest_first[15:]
    assert second["next_cursor"] is None


def test_history_is_repeatable_without_writes(service, clock):
    client = service.add_client("Ali", "0600", 1000)
    for amount in (5, 6, 7):
        service.add_payment(client["id"], amount)

    assert service.get_payment_history(client["id"]) == service.get_payment_history(client["id"])


def test_history_exact_page_size_has_no_next_cursor(service, clock):
    client = service.add_client("Ali", "0600", 1000)
    for _ in range(15):
        service.add_payment(client["id"], 1)

    page = service.get_payment_history(client["id"], None, 15)
    assert len(page["payments"]) == 15
    assert page["next_cursor"] is None


def test_history_pages_cover_duplicate_timestamps(service, monkeypatch):
    from creditbook.services import ledger_service

    frozen = datetime(2026, 2, 2, 10, 0, 0, tzinfo=timezone.utc)
    monkeypatch.setattr(ledger_service, "utcnow", lambda: frozen)

    client = service.add_client("Ali", "0600", 1000)
    expected = {service.add_payment(client["id"], 1)["id"] for _ in range(7)}

    seen = []
    cursor = None
    while True:
        page = service.get_payment_history(client["id"], cursor, 3)
        seen.extend(p["id"] for p in page["payments"])
        cursor = page["next_cursor"]
        if cursor is None:
            break

    assert len(seen) == len(expected)
    assert set(seen) == expected


def test_history_for_client_without_payments_is_empty(service):
    client = service.add_client("Ali", "0600", 1000)
    assert service.get_payment_history(client["id"]) == {"payments": [], "next_cursor": None}


@pytest.mark.parametrize("cursor", ["not-a-cursor", "!!!"])
def test_history_rejects_malformed_cursor(service, cursor):
    with pytest.raises(ValidationError):
        service.get_payment_history("any", cursor)


@pytest.mark.parametrize("page_size", [0, -1, 2.5, True])
def test_history_rejects_bad_page_size(service, page_size):
    with pytest.raises(ValidationError):
        service.get_payment_history("any", None, page_size)


def test_history_degrades_to_empty_page_on_store_error(service, monkeypatch):
    def broken(*args, **kwargs):
        raise StoreError("timeout")

    monkeypatch.setattr(service.store, "query_range", broken)
    assert service.get_payment_history("any") == {"payments": [], "next_cursor": None}


# --- listings & aggregates ---


def test_get_clients_sorted_by_remaining_balance(service):
    service.add_client("Low", "1", 10)
    service.add_client("High", "2", 500)
    service.add_client("Mid", "3", 100)

    assert [c["name"] for c in service.get_clients()] == ["High", "Mid", "Low"]


def test_get_clients_degrades_to_empty_list(service, monkeypatch):
    def broken(*args, **kwargs):
        raise StoreError("offline")

    monkeypatch.setattr(service.store, "list_documents", broken)
    assert service.get_clients() == []


def test_add_client_propagates_store_errors(service, monkeypatch):
    def broken(*args, **kwargs):
        raise StoreError("offline")

    monkeypatch.setattr(service.store, "set_document", broken)
    with pytest.raises(StoreError):
        service.add_client("Ali", "0600", 10)


def test_total_outstanding_sums_raw_balances(service):
    assert service.total_outstanding() == 0

    a = service.add_client("A", "1", 1000)
    service.add_client("B", "2", 250)
    c = service.add_client("C", "3", 100)
    service.add_payment(a["id"], 400)
    service.add_payment(c["id"], 150)

    assert service.total_outstanding() == 600 + 250 - 50


def test_payment_alerts_window_and_order(service):
    now = datetime(2026, 6, 10, 12, 0, tzinfo=timezone.utc)
    overdue = service.add_client("Overdue", "1", 100, due_date=now - timedelta(days=3))
    soon = service.add_client("Soon", "2", 100, due_date=now + timedelta(days=2, hours=1))
    service.add_client("Later", "3", 100, due_date=now + timedelta(days=30))
    service.add_client("NoDate", "4", 100)
    paid = service.add_client("Paid", "5", 100, due_date=now - timedelta(days=1))
    service.add_payment(paid["id"], 100)

    alerts = service.payment_alerts(now=now)

    assert [a["id"] for a in alerts] == [overdue["id"], soon["id"]]
    assert alerts[0]["days_until_due"] == -3
    assert alerts[0]["is_overdue"] is True
    assert alerts[1]["days_until_due"] == 2
    assert alerts[1]["is_overdue"] is False


def test_payment_alerts_custom_window(service):
    now = datetime(2026, 6, 10, tzinfo=timezone.utc)
    service.add_client("Month", "1", 100, due_date=now + timedelta(days=20))

    assert service.payment_alerts(now=now, window_days=7) == []
    assert len(service.payment_alerts(now=now, window_days=30)) == 1


# --- reconcile ---


def test_reconcile_repairs_drifted_balances(service, clock):
    good = service.add_client("Good", "1", 100)
    bad = service.add_client("Bad", "2", 100)
    service.add_payment(good["id"], 30)
    service.add_payment(bad["id"], 40)

    # Simulate a legacy record written without the balance fields kept in sync
    service.store.set_document("clients", bad["id"], {"amount_paid": 0.0, "remaining_balance": 100.0})

    assert service.reconcile_balances() == [bad["id"]]
    repaired = service.get_client(bad["id"])
    assert repaired["amount_paid"] == 40
    assert repaired["remaining_balance"] == 60
    assert service.reconcile_balances() == []


def test_reconcile_ignores_float_rounding_in_cents(service, clock):
    client = service.add_client("Ali", "0600", 1)
    for amount in (0.1, 0.2, 0.3):
        service.add_payment(client["id"], amount)

    assert service.reconcile_balances() == []
    assert_consistent(service, client["id"])
    assert service.get_client(client["id"])["amount_paid"] == pytest.approx(0.6)


def test_reconcile_still_flags_a_one_cent_drift(service, clock):
    client = service.add_client("Ali", "0600", 1)
    service.add_payment(client["id"], 0.5)
    service.store.set_document("clients", client["id"], {"amount_paid": 0.49, "remaining_balance": 0.51})

    assert service.reconcile_balances() == [client["id"]]
    assert service.get_client(client["id"])["amount_paid"] == 0.5


def test_balance_invariant_over_mixed_operations(service, clock):
    client = service.add_client("Ali", "0600", 1000)
    cid = client["id"]

    service.add_payment(cid, 120)
    assert_consistent(service, cid)
    service.update_client(cid, "Ali", "0600", 900)
    assert_consistent(service, cid)
    service.add_payment(cid, 80.5)
    assert_consistent(service, cid)
    service.update_client(cid, "Ali", "0600", 100)
    assert_consistent(service, cid)
    service.add_payment(cid, 1)
    assert_consistent(service, cid)
