from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, Generic, List, Optional, TypeVar
from uuid import uuid4

from medbill.errors import NotFoundError, ValidationError
from medbill.models import BillRecord, Encounter, PrescriptionRecord

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRepository(Generic[T]):
    """
    Process-lifetime store keyed by id, insertion ordered.
    Created once per app and handed to routes through Depends.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, T] = {}

    def add(self, item_id: str, item: T) -> T:
        with self._lock:
            self._items[item_id] = item
        return item

    def get(self, item_id: str) -> Optional[T]:
        with self._lock:
            return self._items.get(item_id)

    def list(self) -> List[T]:
        with self._lock:
            return list(self._items.values())

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class PatientRepository(InMemoryRepository[Encounter]):

    def create(self, name: str, gender: str, clinical_notes: str, current_meds: str = "") -> Encounter:
        now = _utcnow()
        encounter = Encounter(
            id=f"patient_{uuid4().hex[:16]}",
            name=name,
            gender=gender,
            clinical_notes=clinical_notes,
            current_meds=current_meds or "",
            created_at=now,
            last_updated=now,
        )
        return self.add(encounter.id, encounter)

    def get_or_404(self, patient_id: str) -> Encounter:
        encounter = self.get((patient_id or "").strip())
        if encounter is None:
            raise NotFoundError("Patient not found")
        return encounter

    def update_notes(self, patient_id: str, clinical_notes: str) -> Encounter:
        """
        Notes stay editable after billing has started; nothing else does.
        """
        notes = (clinical_notes or "").strip()
        if not notes:
            raise ValidationError("Clinical notes are required")
        with self._lock:
            current = self._items.get(patient_id)
            if current is None:
                raise NotFoundError("Patient not found")
            updated = current.model_copy(update={"clinical_notes": notes, "last_updated": _utcnow()})
            self._items[patient_id] = updated
        return updated

    def mark_billing_started(self, patient_id: Optional[str]) -> Optional[Encounter]:
        if not patient_id:
            return None
        with self._lock:
            current = self._items.get(patient_id)
            if current is None:
                return None
            if not current.billing_started:
                current = current.model_copy(update={"billing_started": True, "last_updated": _utcnow()})
                self._items[patient_id] = current
        return current


class PrescriptionRepository(InMemoryRepository[PrescriptionRecord]):
    pass


class BillRepository(InMemoryRepository[BillRecord]):

    def for_patient(self, patient_id: str) -> List[BillRecord]:
        return [b for b in self.list() if b.patient_id == patient_id]
