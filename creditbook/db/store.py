# creditbook/db/store.py
"""
Document-store facade over the SQLModel tables.

Documents are addressed by collection path, the same way the POS front end
addresses them:

    clients                      -> Client rows
    clients/<client_id>/payments -> Payment rows owned by that client

Every public method runs inside ``transaction()``. Calls made while a
transaction is already open join it, so several writes can be committed as
one unit. Database failures are re-raised as ``StoreError``.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type

from sqlalchemy import and_, delete, func, or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from ..core.errors import StoreError
from ..models import Client, Payment

logger = logging.getLogger(__name__)

# collection name -> (model, field holding the parent document id)
COLLECTIONS: Dict[str, Tuple[Type[SQLModel], Optional[str]]] = {
    "clients": (Client, None),
    "payments": (Payment, "client_id"),
}

Document = Dict[str, Any]
UpdateFn = Callable[[Optional[Document]], Optional[Document]]


def as_utc(value: datetime) -> datetime:
    """Aware UTC view of a stored timestamp; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utc_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: as_utc(value) if isinstance(value, datetime) else value
        for key, value in fields.items()
    }


def _as_document(row: SQLModel) -> Document:
    # Some backends (SQLite) hand datetimes back without tzinfo
    return _utc_fields(row.model_dump())


def clients_path() -> str:
    return "clients"


def payments_path(client_id: str) -> str:
    return f"clients/{client_id}/payments"


class DocumentStore:
    """
    Key-addressable document store backed by a SQLModel session.
    """

    def __init__(self, session: Session):
        """
        Initialize with a SQLModel session.

        Args:
            session: SQLModel Session instance
        """
        self.session = session
        self._depth = 0

    # --- Paths ---
    def _resolve(self, path: str) -> Tuple[Type[SQLModel], Dict[str, Any]]:
        """Map a collection path to its model and the parent filter it implies."""
        parts = [p for p in path.strip("/").split("/") if p]
        if len(parts) == 1 and parts[0] in COLLECTIONS:
            model, parent_field = COLLECTIONS[parts[0]]
            if parent_field is None:
                return model, {}
        elif len(parts) == 3 and parts[0] == "clients" and parts[2] in COLLECTIONS:
            model, parent_field = COLLECTIONS[parts[2]]
            if parent_field is not None:
                return model, {parent_field: parts[1]}
        raise ValueError(f"Unknown collection path: {path!r}")

    # --- Transactions ---
    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Open a unit of work. Nested calls join the outermost one, which
        commits on success and rolls back on any error.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self.session
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Store transaction failed: {e}")
            raise StoreError(f"Store error: {e}", cause=e) from e
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._depth = 0

    # --- Reads ---
    def get_document(self, path: str, doc_id: str) -> Optional[Document]:
        model, parent = self._resolve(path)
        with self.transaction() as session:
            row = session.get(model, doc_id)
            if row is None or any(getattr(row, k) != v for k, v in parent.items()):
                return None
            return _as_document(row)

    def find_one(self, path: str, **filters: Any) -> Optional[Document]:
        """First document of the collection whose fields equal ``filters``."""
        model, parent = self._resolve(path)
        conditions = {**filters, **parent}
        statement = select(model).where(
            *[getattr(model, k) == v for k, v in conditions.items()]
        ).limit(1)
        with self.transaction() as session:
            row = session.exec(statement).first()
            return _as_document(row) if row else None

    def list_documents(
        self, path: str, order_by: Optional[str] = None, descending: bool = False
    ) -> List[Document]:
        model, parent = self._resolve(path)
        statement = select(model).where(*[getattr(model, k) == v for k, v in parent.items()])
        if order_by:
            column = getattr(model, order_by)
            statement = statement.order_by(column.desc() if descending else column.asc())
        with self.transaction() as session:
            return [_as_document(row) for row in session.exec(statement).all()]

    def query_range(
        self,
        path: str,
        order_field: str,
        less_than: Any = None,
        greater_than: Any = None,
        tie_breaker: Optional[str] = None,
        limit: Optional[int] = None,
        descending: bool = True,
    ) -> List[Document]:
        """
        Ordered range query over one collection.

        Args:
            path: Collection path.
            order_field: Field the results are ordered by.
            less_than: Exclusive upper bound. A ``(value, tie_value)`` pair
                when ``tie_breaker`` is given.
            greater_than: Exclusive lower bound, same shape as ``less_than``.
            tie_breaker: Unique field that orders rows sharing ``order_field``.
            limit: Maximum number of documents returned.
            descending: Sort direction for both fields.
        """
        model, parent = self._resolve(path)
        column = getattr(model, order_field)
        tie = getattr(model, tie_breaker) if tie_breaker else None

        statement = select(model).where(*[getattr(model, k) == v for k, v in parent.items()])
        if less_than is not None:
            statement = statement.where(self._bound(column, tie, less_than, below=True))
        if greater_than is not None:
            statement = statement.where(self._bound(column, tie, greater_than, below=False))

        ordering = [column.desc() if descending else column.asc()]
        if tie is not None:
            ordering.append(tie.desc() if descending else tie.asc())
        statement = statement.order_by(*ordering)
        if limit is not None:
            statement = statement.limit(limit)

        with self.transaction() as session:
            return [_as_document(row) for row in session.exec(statement).all()]

    @staticmethod
    def _bound(column, tie, bound: Any, below: bool):
        if tie is None:
            return column < bound if below else column > bound
        value, tie_value = bound
        if below:
            return or_(column < value, and_(column == value, tie < tie_value))
        return or_(column > value, and_(column == value, tie > tie_value))

    def count(self, path: str) -> int:
        model, parent = self._resolve(path)
        statement = select(func.count()).select_from(model).where(
            *[getattr(model, k) == v for k, v in parent.items()]
        )
        with self.transaction() as session:
            return int(session.exec(statement).one())

    def sum(self, path: str, field: str) -> float:
        model, parent = self._resolve(path)
        statement = select(func.coalesce(func.sum(getattr(model, field)), 0.0)).where(
            *[getattr(model, k) == v for k, v in parent.items()]
        )
        with self.transaction() as session:
            return float(session.exec(statement).one())

    # --- Writes ---
    def set_document(self, path: str, doc_id: str, value: Document) -> Document:
        """Create or overwrite the document ``doc_id``; returns the stored document."""
        model, parent = self._resolve(path)
        fields = _utc_fields({k: v for k, v in value.items() if k != "id"})
        fields.update(parent)
        with self.transaction() as session:
            row = session.get(model, doc_id)
            if row is None:
                row = model(id=doc_id, **fields)
            else:
                for key, field_value in fields.items():
                    setattr(row, key, field_value)
            session.add(row)
            session.flush()
            session.refresh(row)
            return _as_document(row)

    def delete_document(self, path: str, doc_id: str) -> bool:
        """Remove ``doc_id``. Returns False when it did not exist."""
        model, parent = self._resolve(path)
        with self.transaction() as session:
            row = session.get(model, doc_id)
            if row is None or any(getattr(row, k) != v for k, v in parent.items()):
                return False
            session.delete(row)
            session.flush()
            return True

    def delete_collection(self, path: str) -> int:
        """Remove every document of a collection; returns how many were removed."""
        model, parent = self._resolve(path)
        statement = delete(model).where(*[getattr(model, k) == v for k, v in parent.items()])
        with self.transaction() as session:
            result = session.execute(statement)
            return result.rowcount or 0

    def transactional_update(self, path: str, doc_id: str, update_fn: UpdateFn) -> Optional[Document]:
        """
        Read-modify-write of one document under a row lock.

        ``update_fn`` receives the current document (``None`` when missing)
        and returns the fields to write, or ``None`` to leave it unchanged.
        Other store calls made from ``update_fn`` join the same transaction.
        Returns the document as committed, or ``None`` when it does not exist.
        """
        model, parent = self._resolve(path)
        statement = select(model).where(model.id == doc_id).with_for_update()
        with self.transaction() as session:
            row = session.exec(statement).first()
            if row is not None and any(getattr(row, k) != v for k, v in parent.items()):
                row = None

            changes = update_fn(_as_document(row) if row is not None else None)
            if row is None:
                return None
            if changes:
                for key, value in _utc_fields(changes).items():
                    if key != "id":
                        setattr(row, key, value)
                session.add(row)
                session.flush()
                session.refresh(row)
            return _as_document(row)

    # --- Health ---
    def ping(self) -> bool:
        with self.transaction() as session:
            session.execute(text("SELECT 1"))
        return True
