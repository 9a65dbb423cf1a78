"""
Shared dependencies and state for the API.

The import service holds the in-memory job store, the batch tracker and the
background runner, so exactly one instance is shared by every request.
"""
import threading
from typing import Optional

from sqlalchemy.orm import Session

from app.db.session import get_session_local
from app.domain.imports.pipeline import AppointmentImportService

_import_service: Optional[AppointmentImportService] = None
_service_lock = threading.Lock()


def open_session() -> Session:
    """Session factory used by the import pipeline and its worker threads."""
    return get_session_local()()


def get_import_service() -> AppointmentImportService:
    global _import_service
    if _import_service is None:
        with _service_lock:
            if _import_service is None:
                _import_service = AppointmentImportService(open_session)
    return _import_service


def shutdown_import_service() -> None:
    """Wait for running batches and release the worker pool."""
    global _import_service
    with _service_lock:
        service, _import_service = _import_service, None
    if service is not None:
        service.shutdown()
