"""
Resolve the clients behind imported rows to accounts.

Rows are grouped into identities first: two rows sharing a normalized email or
a normalized phone number belong to the same identity, so they resolve to the
same ClientRecord. Each identity is then looked up by email, then by phone,
and falls back to a guest placeholder account. Guests are deduplicated within
one import only; linking a guest to a later registration is handled elsewhere.
"""
import logging
from typing import Dict, Iterable, Optional, Tuple

from app.domain.imports.models import ClientIdentity, ClientKind, ClientRecord, ValidatedRow

logger = logging.getLogger(__name__)


def identity_key(email: Optional[str], phone: Optional[str], name: Optional[str] = None) -> Optional[str]:
    """Dedup key: normalized email if present, else normalized phone, else the name."""
    if email:
        return f"email:{email}"
    if phone:
        return f"phone:{phone}"
    if name:
        return f"name:{name.casefold()}"
    return None


def collect_identities(rows: Iterable[ValidatedRow]) -> Tuple[Dict[str, ClientIdentity], Dict[int, str]]:
    """
    Group rows into distinct client identities.

    Returns:
        (identities keyed by dedup key, row number -> dedup key)
    """
    rows = [row for row in rows if identity_key(row.client_email, row.client_phone, row.client_name)]
    parent = list(range(len(rows)))

    def find(index: int) -> int:
        while parent[index] != index:
            parent[index] = parent[parent[index]]
            index = parent[index]
        return index

    def union(first: int, second: int) -> None:
        root_first, root_second = find(first), find(second)
        if root_first != root_second:
            # The earlier row stays the root so groups keep first-seen order
            parent[max(root_first, root_second)] = min(root_first, root_second)

    seen: Dict[str, int] = {}
    for index, row in enumerate(rows):
        if row.client_email or row.client_phone:
            links = [f"email:{row.client_email}" if row.client_email else None,
                     f"phone:{row.client_phone}" if row.client_phone else None]
        else:
            links = [identity_key(None, None, row.client_name)]
        for link in filter(None, links):
            if link in seen:
                union(index, seen[link])
            else:
                seen[link] = index

    groups: Dict[int, list] = {}
    for index, row in enumerate(rows):
        groups.setdefault(find(index), []).append(row)

    identities: Dict[str, ClientIdentity] = {}
    row_keys: Dict[int, str] = {}
    for members in groups.values():
        # Later rows fill in what earlier rows left blank
        name = next((row.client_name for row in members if row.client_name), None)
        email = next((row.client_email for row in members if row.client_email), None)
        phone = next((row.client_phone for row in members if row.client_phone), None)
        key = identity_key(email, phone, name)
        identities[key] = ClientIdentity(key, name, email, phone)
        for row in members:
            row_keys[row.number] = key

    return identities, row_keys


class ClientReconciler:
    """
    Resolves identities through a client directory.

    The directory is anything exposing ``find_client_id_by_email``,
    ``find_client_id_by_phone`` and ``create_guest_client`` (see
    ``app.domain.catalog.CatalogRepository``).
    """

    def __init__(self, directory, *, salon_id: int, create_guest_users: bool = True):
        self.directory = directory
        self.salon_id = salon_id
        self.create_guest_users = create_guest_users

    def _find_existing(self, identity: ClientIdentity) -> Optional[int]:
        if identity.email:
            account_id = self.directory.find_client_id_by_email(identity.email)
            if account_id is not None:
                return account_id
        if identity.phone:
            return self.directory.find_client_id_by_phone(identity.phone)
        return None

    def reconcile(self, identities: Dict[str, ClientIdentity], *, persist: bool = False) -> Dict[str, ClientRecord]:
        """
        Produce one ClientRecord per identity.

        Args:
            identities: Output of ``collect_identities``.
            persist: Create guest accounts. Without it (validation dry run)
                guests are reported with ``account_id=None``.
        """
        records: Dict[str, ClientRecord] = {}
        for key, identity in identities.items():
            account_id = self._find_existing(identity)
            if account_id is not None:
                records[key] = ClientRecord(key, ClientKind.EXISTING, account_id)
            elif not self.create_guest_users:
                records[key] = ClientRecord(key, ClientKind.NONE, None)
            elif persist:
                guest_id = self.directory.create_guest_client(
                    salon_id=self.salon_id,
                    name=identity.name,
                    email=identity.email,
                    phone=identity.phone,
                )
                records[key] = ClientRecord(key, ClientKind.NEW_GUEST, guest_id)
            else:
                records[key] = ClientRecord(key, ClientKind.NEW_GUEST, None)

        existing, guests = summarize_clients(records)
        logger.info(
            "Reconciled %d clients for salon %s: %d existing, %d new guests%s",
            len(records),
            self.salon_id,
            existing,
            guests,
            "" if persist else " (dry run)",
        )
        return records


def summarize_clients(records: Dict[str, ClientRecord]) -> Tuple[int, int]:
    """Return (existing, new_guest) counts."""
    existing = sum(1 for record in records.values() if record.kind == ClientKind.EXISTING)
    guests = sum(1 for record in records.values() if record.kind == ClientKind.NEW_GUEST)
    return existing, guests
