"""
ORM models for the salon catalog, appointments and import batch history.

The catalog tables (salons, staff, services, clients) are owned by the wider
booking product; this service reads them to reconcile imported rows and writes
only appointments, guest clients and its own import bookkeeping tables.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    Time,
)
from sqlalchemy.engine import Engine

from app.db.session import Base, get_engine


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class Salon(Base):
    __tablename__ = "salons"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    city = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class Staff(Base):
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, index=True)
    salon_id = Column(Integer, ForeignKey("salons.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    salon_id = Column(Integer, ForeignKey("salons.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class Client(Base):
    """
    A client account.

    Guest accounts (``is_guest``) are placeholders created by imports for
    people without a registered account. Their email/phone are indexed so a
    later registration can be linked back to the imported history.
    """
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True, index=True)
    is_guest = Column(Boolean, default=False, nullable=False)
    created_by_salon_id = Column(Integer, ForeignKey("salons.id"), nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    salon_id = Column(Integer, ForeignKey("salons.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    service_ids = Column(JSON, nullable=True)
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)
    client_phone = Column(String(50), nullable=True)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=True)
    status = Column(String(50), nullable=False, default="completed")
    notes = Column(Text, nullable=True)
    import_batch_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=_utcnow)


class ImportBatchRecord(Base):
    """Persistent mirror of an import batch, used for history and restarts."""
    __tablename__ = "import_batches"

    id = Column(String(36), primary_key=True)
    import_id = Column(String(36), nullable=False, index=True)
    salon_id = Column(Integer, nullable=True, index=True)
    staff_id = Column(Integer, nullable=True)
    filename = Column(String(500), nullable=True)
    detected_columns = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="queued", index=True)
    skip_invalid = Column(Boolean, nullable=False, default=True)
    total_rows = Column(Integer, nullable=False, default=0)
    successful_rows = Column(Integer, nullable=False, default=0)
    failed_rows = Column(Integer, nullable=False, default=0)
    progress = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class ImportBatchError(Base):
    __tablename__ = "import_batch_errors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(String(36), ForeignKey("import_batches.id", ondelete="CASCADE"), nullable=False, index=True)
    row_number = Column(Integer, nullable=False)
    raw_data = Column(JSON, nullable=True)
    errors = Column(JSON, nullable=False)


def create_tables(engine: Optional[Engine] = None) -> None:
    """Create every table this service needs; safe to call repeatedly."""
    Base.metadata.create_all(bind=engine or get_engine())
