"""
Pytest configuration and fixtures for the appointment import tests.

Every test gets its own in-memory SQLite database with the service tables
created and a small salon catalog seeded: one salon, one staff member, three
services and two registered clients.
"""

import os

# Must be set before the app (and its settings) are imported.
os.environ["SKIP_DB_INIT"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.orm import sessionmaker

from app.db.models import Client, Salon, Service, Staff, create_tables
from app.db.session import build_engine
from app.domain.imports.batches import BatchTracker
from app.domain.imports.executor import BatchExecutor, BatchRunner
from app.domain.imports.jobs import ImportJobStore
from app.domain.imports.pipeline import AppointmentImportService


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog(db):
    """Seed a salon catalog and return the ids the tests refer to."""
    salon = Salon(name="Salon Lana", city="Sarajevo")
    db.add(salon)
    db.flush()

    staff = Staff(salon_id=salon.id, name="Amra")
    sisanje = Service(salon_id=salon.id, name="Šišanje", duration_minutes=30)
    feniranje = Service(salon_id=salon.id, name="Feniranje", duration_minutes=45)
    manikir = Service(salon_id=salon.id, name="Manikir", duration_minutes=60)
    retired = Service(salon_id=salon.id, name="Trajna", duration_minutes=90, is_active=False)
    ana = Client(name="Ana Anić", email="ana@example.com", phone="061111222")
    marko = Client(name="Marko Marić", email="marko@example.com", phone="+38762333444")
    db.add_all([staff, sisanje, feniranje, manikir, retired, ana, marko])
    db.commit()

    return {
        "salon_id": salon.id,
        "staff_id": staff.id,
        "services": {
            "Šišanje": sisanje.id,
            "Feniranje": feniranje.id,
            "Manikir": manikir.id,
            "Trajna": retired.id,
        },
        "clients": {"ana": ana.id, "marko": marko.id},
    }


@pytest.fixture
def tracker(session_factory):
    return BatchTracker(session_factory)


@pytest.fixture
def import_service(session_factory, tracker):
    """Import service that runs batches inline, so a started batch is already finished."""
    return AppointmentImportService(
        session_factory,
        job_store=ImportJobStore(),
        tracker=tracker,
        runner=BatchRunner(max_workers=0),
        executor=BatchExecutor(tracker, session_factory, max_workers=1),
    )
