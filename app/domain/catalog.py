"""
Access to the salon catalog (services, clients) and appointment storage.

This is the seam between the import pipeline and the booking product's data:
the pipeline only ever talks to the catalog through this repository.
"""
import logging
from datetime import date, time
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.models import Appointment, Client, Service
from app.domain.imports.models import CatalogService

logger = logging.getLogger(__name__)


class CatalogRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_active_services(self, salon_id: int) -> List[CatalogService]:
        services = (
            self.db.query(Service)
            .filter(Service.salon_id == salon_id, Service.is_active.is_(True))
            .order_by(Service.id)
            .all()
        )
        return [CatalogService(id=s.id, name=s.name, duration_minutes=s.duration_minutes) for s in services]

    def find_client_id_by_email(self, email: str) -> Optional[int]:
        client = (
            self.db.query(Client.id)
            .filter(func.lower(Client.email) == email.lower())
            .order_by(Client.is_guest, Client.id)
            .first()
        )
        return client.id if client else None

    def find_client_id_by_phone(self, phone: str) -> Optional[int]:
        client = (
            self.db.query(Client.id)
            .filter(Client.phone == phone)
            .order_by(Client.is_guest, Client.id)
            .first()
        )
        return client.id if client else None

    def create_guest_client(
        self,
        *,
        salon_id: int,
        name: Optional[str],
        email: Optional[str],
        phone: Optional[str],
    ) -> int:
        """Create a placeholder account for an imported client and return its id."""
        guest = Client(
            name=name,
            email=email,
            phone=phone,
            is_guest=True,
            created_by_salon_id=salon_id,
        )
        self.db.add(guest)
        self.db.commit()
        logger.debug("Created guest client %s for salon %s", guest.id, salon_id)
        return guest.id

    def create_appointment(
        self,
        *,
        salon_id: int,
        staff_id: Optional[int],
        client_id: Optional[int],
        service_ids: Sequence[int],
        client_name: Optional[str],
        client_email: Optional[str],
        client_phone: Optional[str],
        appointment_date: date,
        start_time: time,
        end_time: Optional[time],
        notes: Optional[str],
        import_batch_id: str,
    ) -> int:
        appointment = Appointment(
            salon_id=salon_id,
            staff_id=staff_id,
            client_id=client_id,
            service_id=service_ids[0] if service_ids else None,
            service_ids=list(service_ids) or None,
            client_name=client_name,
            client_email=client_email,
            client_phone=client_phone,
            date=appointment_date,
            time=start_time,
            end_time=end_time,
            status="completed",
            notes=notes,
            import_batch_id=import_batch_id,
        )
        self.db.add(appointment)
        self.db.commit()
        return appointment.id
