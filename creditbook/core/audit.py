# creditbook/core/audit.py
"""
Audit trail for ledger writes.
Every action that moves money or removes records is written as one JSON
line to logs/audit.log so balances can be traced back afterwards.
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request

from .config import get_settings

audit_logger = logging.getLogger("audit")
audit_logger.setLevel(logging.INFO)
audit_logger.propagate = False  # Don't duplicate to root logger


def audit_log_path() -> str:
    return os.path.abspath(os.path.join(get_settings().audit_log_dir, "audit.log"))


def _ensure_handler() -> None:
    # Other handlers (log capture, dictConfig) may sit on this logger too
    path = audit_log_path()
    for handler in audit_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == path:
            return
    os.makedirs(os.path.dirname(path), exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(file_handler)


def client_ip(request: Optional[Request]) -> str:
    if request is None:
        return "unknown"
    # Reverse proxy first
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def log_action(
    action: str,
    resource_type: str,
    resource_id: str,
    request: Optional[Request] = None,
    details: Optional[dict] = None,
    status: str = "success",
) -> dict:
    """
    Record a ledger action in the audit log.

    Args:
        action: The action performed (e.g., "CREATE", "UPDATE", "DELETE", "PAYMENT")
        resource_type: Type of resource affected ("client", "payment")
        resource_id: Identifier of the affected resource
        request: FastAPI Request object to extract the caller IP (optional)
        details: Additional context dictionary (optional)
        status: "success" or "failure"

    Returns:
        The entry that was written.
    """
    _ensure_handler()

    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.upper(),
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "ip_address": client_ip(request),
        "status": status,
    }
    if details:
        log_entry["details"] = details

    audit_logger.info(json.dumps(log_entry, ensure_ascii=False, default=str))
    return log_entry
