from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from sqlmodel import Session

from ...core.audit import log_action
from ...core.config import get_settings
from ...core.errors import NotFoundError, ValidationError
from ...core.rate_limit import limiter
from ...db.engine import get_session
from ...db.store import DocumentStore, clients_path
from ...services.ledger_service import LedgerService
from .models import (
    Client,
    ClientAlert,
    ClientCreate,
    ClientUpdate,
    CreditSummary,
    Payment,
    PaymentCreate,
    PaymentPage,
)

router = APIRouter()


# --- Dependency Injectors ---
def get_store(session: Session = Depends(get_session)) -> DocumentStore:
    return DocumentStore(session)


def get_ledger_service(store: DocumentStore = Depends(get_store)) -> LedgerService:
    return LedgerService(store)


# --- Client Endpoints ---


@router.get("/credits/clients", response_model=list[Client])
def api_get_all_clients(service: LedgerService = Depends(get_ledger_service)):
    return service.get_clients()


@router.get("/credits/clients/{client_id}", response_model=Client)
def api_get_client(client_id: str, service: LedgerService = Depends(get_ledger_service)):
    try:
        return service.get_client(client_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/credits/clients", response_model=Client, status_code=status.HTTP_201_CREATED)
def api_create_client(
    client: ClientCreate,
    request: Request,
    service: LedgerService = Depends(get_ledger_service),
):
    try:
        new_client = service.add_client(
            client.name, client.phone, client.total_debt, client.payment_due_date
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    log_action("CREATE", "client", new_client["id"], request=request,
               details={"total_debt": new_client["total_debt"]})
    return new_client


@router.put("/credits/clients/{client_id}", response_model=Client)
def api_update_client(
    client_id: str,
    client_update: ClientUpdate,
    request: Request,
    service: LedgerService = Depends(get_ledger_service),
):
    try:
        updated_client = service.update_client(
            client_id,
            client_update.name,
            client_update.phone,
            client_update.total_debt,
            client_update.payment_due_date,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    log_action("UPDATE", "client", client_id, request=request,
               details={"total_debt": updated_client["total_debt"]})
    return updated_client


@router.delete("/credits/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_client(
    client_id: str,
    request: Request,
    service: LedgerService = Depends(get_ledger_service),
):
    if service.delete_client(client_id):
        log_action("DELETE", "client", client_id, request=request)
    return


# --- Payment Endpoints ---


@router.post(
    "/credits/clients/{client_id}/payments",
    response_model=Payment,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(lambda: get_settings().payment_rate_limit)
def api_add_payment(
    client_id: str,
    payment: PaymentCreate,
    request: Request,
    response: Response,
    idempotency_key: str | None = Header(default=None),
    service: LedgerService = Depends(get_ledger_service),
):
    """
    Register a payment and update the client's balance in one transaction.
    Send an Idempotency-Key header to make retries safe; a replay answers
    200 with the original payment.
    """
    try:
        new_payment = service.add_payment(
            client_id, payment.amount, payment.notes, idempotency_key=idempotency_key
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if new_payment["replayed"]:
        response.status_code = status.HTTP_200_OK
        return new_payment
    log_action("PAYMENT", "client", client_id, request=request,
               details={"payment_id": new_payment["id"], "amount": new_payment["amount"]})
    return new_payment


@router.get("/credits/clients/{client_id}/payments", response_model=PaymentPage)
def api_get_payment_history(
    client_id: str,
    cursor: str | None = Query(default=None),
    page_size: int | None = Query(default=None, ge=1, le=100),
    service: LedgerService = Depends(get_ledger_service),
):
    try:
        return service.get_payment_history(
            client_id, cursor, page_size or get_settings().payment_page_size
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- Dashboard Endpoints ---


@router.get("/credits/summary", response_model=CreditSummary)
def api_get_summary(
    service: LedgerService = Depends(get_ledger_service),
    store: DocumentStore = Depends(get_store),
):
    return {
        "total_outstanding": service.total_outstanding(),
        "client_count": store.count(clients_path()),
    }


@router.get("/credits/alerts", response_model=list[ClientAlert])
def api_get_payment_alerts(
    window_days: int | None = Query(default=None, ge=0, le=365),
    service: LedgerService = Depends(get_ledger_service),
):
    if window_days is None:
        window_days = get_settings().payment_alert_window_days
    return service.payment_alerts(window_days=window_days)
