# scripts/reconcile_balances.py
# One-time repair: recompute every client's amount_paid / remaining_balance
# from its payment history. Safe to run again; it only rewrites drifted rows.
import os
import sys

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv

load_dotenv()

from sqlmodel import Session

from creditbook.core.errors import StoreError
from creditbook.db.engine import create_db_and_tables, get_engine
from creditbook.db.store import DocumentStore
from creditbook.services.ledger_service import LedgerService


def main() -> int:
    create_db_and_tables()
    with Session(get_engine()) as session:
        service = LedgerService(DocumentStore(session))
        try:
            repaired = service.reconcile_balances()
        except StoreError as e:
            print(f"Reconcile failed: {e}")
            return 1

    if repaired:
        print(f"Repaired {len(repaired)} clients:")
        for client_id in repaired:
            print(f"  - {client_id}")
    else:
        print("All client balances already consistent.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
