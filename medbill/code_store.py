from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from medbill.billing import compute_summary
from medbill.config import Fees
from medbill.errors import ValidationError
from medbill.models import BillingSummary, DiagnosisCode, EncounterSnapshot, LineItem, PatientData

logger = logging.getLogger("medbill.code_store")


def parse_code(token: Any) -> DiagnosisCode:
    try:
        return DiagnosisCode.from_token(token)
    except PydanticValidationError:
        raise ValidationError(f"Invalid ICD-10 code format: {_token_text(token)}") from None


def _token_text(token: Any) -> str:
    if isinstance(token, dict):
        return str(token.get("code") or "")
    return str(token or "").strip()


class EncounterBilling:
    """
    Working codes + line items for one encounter.

    One instance per request/session; nothing here is shared across requests,
    so there is no locking.
    """

    def __init__(self, patient: Optional[PatientData] = None, fees: Optional[Fees] = None) -> None:
        self.patient = patient or PatientData()
        self.fees = fees or Fees()
        self._codes: List[DiagnosisCode] = []
        self._items: List[LineItem] = []

    # ---- codes ----

    @property
    def codes(self) -> List[DiagnosisCode]:
        return list(self._codes)

    def add_code(self, token: Any) -> DiagnosisCode:
        """
        Adds an ICD-10 code. Re-adding a code already present is a no-op
        (the existing entry is returned, its label kept).
        """
        code = parse_code(token)
        for existing in self._codes:
            if existing.code == code.code:
                return existing
        self._codes.append(code)
        return code

    def remove_code(self, index: int) -> DiagnosisCode:
        if index < 0 or index >= len(self._codes):
            raise ValidationError(f"No ICD-10 code at position {index}")
        return self._codes.pop(index)

    # ---- line items ----

    @property
    def line_items(self) -> List[LineItem]:
        return list(self._items)

    def add_line_item(self, name: str, cost: Any = None, purpose: Optional[str] = None, frequency: Optional[str] = None) -> LineItem:
        item = LineItem(name=name, cost=cost, purpose=purpose, frequency=frequency)
        self._items.append(item)
        return item

    def remove_line_item(self, index: int) -> LineItem:
        if index < 0 or index >= len(self._items):
            raise ValidationError(f"No medication at position {index}")
        return self._items.pop(index)

    def replace_all(self, codes: Iterable[Any], items: Iterable[Any]) -> None:
        """
        Swap in a full set of codes and items (after a suggestion round trip).
        Everything is validated before anything changes.
        """
        new_codes: List[DiagnosisCode] = []
        seen: set[str] = set()
        for token in codes:
            code = parse_code(token)
            if code.code in seen:
                continue
            seen.add(code.code)
            new_codes.append(code)

        new_items: List[LineItem] = []
        for raw in items:
            if isinstance(raw, LineItem):
                new_items.append(raw)
            elif isinstance(raw, dict):
                new_items.append(LineItem(
                    name=raw.get("name"),
                    cost=raw.get("cost"),
                    purpose=raw.get("purpose"),
                    frequency=raw.get("frequency"),
                ))
            else:
                raise ValidationError(f"Unsupported medication entry: {raw!r}")

        self._codes = new_codes
        self._items = new_items

    # ---- derived ----

    def summary(self) -> BillingSummary:
        # Recomputed on every call; there is no cached total to go stale.
        return compute_summary(self._items, len(self._codes), self.fees)

    def snapshot(self, ai_notes: str = "") -> EncounterSnapshot:
        return EncounterSnapshot(
            patient=self.patient.model_copy(),
            line_items=tuple(self._items),
            codes=tuple(self._codes),
            ai_notes=ai_notes or "",
            summary=self.summary(),
        )
