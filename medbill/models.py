from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, Any, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

# Letter, two digits, optional 1-2 digit subcategory: J06.9, I10, E11.65
ICD10_PATTERN = re.compile(r"^[A-Z][0-9]{2}(\.[0-9]{1,2})?$")

# "J06.9 - Acute upper respiratory infection" / "J06.9: ..." / "J06.9 (...)"
_CODE_LABEL_SPLIT = re.compile(r"^\s*(\S+?)\s*(?:[-–—:]\s*|\(\s*)(.*?)\)?\s*$")


def coerce_money(value: Any) -> Decimal:
    """
    Best-effort conversion to a non-negative two-place Decimal.
    Anything that can't be read as a finite, non-negative amount becomes 0.00.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        raw = str(value).strip().replace("$", "").replace(",", "")
        if not raw:
            return ZERO
        try:
            amount = Decimal(raw)
        except InvalidOperation:
            return ZERO
    if not amount.is_finite() or amount < 0:
        return ZERO
    try:
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # more digits than the decimal context holds
        return ZERO


def split_code_token(raw: str) -> Tuple[str, str]:
    """
    "J06.9 - Acute URI" -> ("J06.9", "Acute URI"); "i10" -> ("I10", "").
    No format check here; that is DiagnosisCode's job.
    """
    s = (raw or "").strip()
    if not s:
        return "", ""
    m = _CODE_LABEL_SPLIT.match(s)
    if m and m.group(2):
        return m.group(1).upper(), m.group(2).strip()
    head, _, rest = s.partition(" ")
    return head.upper(), rest.strip().lstrip("-–—:").strip()


def format_money(amount: Decimal) -> str:
    return f"${coerce_money(amount):,.2f}"


# JSON clients get plain numbers; Python callers keep exact Decimals.
Money = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]


# =========================
# Shared base models (Pydantic v2)
# =========================

class StrictBaseModel(BaseModel):
    """
    Strict, assignment-validating base model.
    Field names are snake_case in Python and camelCase on the wire.
    """
    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ApiPayload(BaseModel):
    """
    Request bodies from the browser form. Unknown keys are ignored, and every
    field is optional so missing values turn into our own 400s.
    """
    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =========================
# Coding + line items
# =========================

class DiagnosisCode(StrictBaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    label: str = ""

    @field_validator("code", mode="before")
    @classmethod
    def _check_format(cls, v: Any) -> str:
        token = str(v or "").strip().upper()
        if not ICD10_PATTERN.match(token):
            raise ValueError(f"Invalid ICD-10 code format: {v!r}")
        return token

    @classmethod
    def from_token(cls, raw: Any) -> "DiagnosisCode":
        """
        Accepts "J06.9", "J06.9 - Acute URI", or a {"code", "label"} mapping.
        Raises pydantic's ValidationError on a bad code.
        """
        if isinstance(raw, DiagnosisCode):
            return raw
        if isinstance(raw, dict):
            code, label = split_code_token(str(raw.get("code") or ""))
            return cls(code=code, label=str(raw.get("label") or raw.get("description") or label).strip())
        code, label = split_code_token(str(raw or ""))
        return cls(code=code, label=label)

    def display(self) -> str:
        return f"{self.code} - {self.label}" if self.label else self.code


class LineItem(StrictBaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    cost: Money = ZERO
    purpose: Optional[str] = None
    frequency: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("cost", mode="before")
    @classmethod
    def _coerce_cost(cls, v: Any) -> Decimal:
        return coerce_money(v)

    @property
    def is_billable(self) -> bool:
        return self.cost > 0


class BillingSummary(StrictBaseModel):
    """
    Derived totals. Always produced by billing.compute_summary; never stored.
    """
    model_config = ConfigDict(frozen=True)

    per_item_total: Money
    consultation_fee: Money
    coding_fee: Money
    grand_total: Money
    code_count: int
    item_count: int
    invalid_items: List[str] = Field(default_factory=list)

    @property
    def is_billable(self) -> bool:
        return self.item_count > 0 and not self.invalid_items


# =========================
# Patients / encounters
# =========================

class Encounter(StrictBaseModel):
    id: str
    name: str
    gender: str
    clinical_notes: str
    current_meds: str = ""
    created_at: datetime = Field(default_factory=_now_utc)
    last_updated: datetime = Field(default_factory=_now_utc)
    billing_started: bool = False


class PatientData(ApiPayload):
    """Patient block as the bill generator receives it (may or may not be saved)."""
    id: Optional[str] = None
    name: Optional[str] = None
    gender: Optional[str] = None
    clinical_notes: Optional[str] = None
    current_meds: Optional[str] = None


class EncounterSnapshot(StrictBaseModel):
    """
    Frozen copy of everything the renderer needs. The renderer never
    reaches back into the live store.
    """
    model_config = ConfigDict(frozen=True)

    patient: PatientData
    line_items: Tuple[LineItem, ...] = ()
    codes: Tuple[DiagnosisCode, ...] = ()
    ai_notes: str = ""
    summary: BillingSummary
    generated_at: datetime = Field(default_factory=_now_utc)


# =========================
# Artifacts + records
# =========================

class Artifact(StrictBaseModel):
    """
    Rendered bill. Write-once: frozen, and its file is created exclusively.
    """
    model_config = ConfigDict(frozen=True)

    bill_id: str
    encounter_id: Optional[str] = None
    filename: str
    media_type: str
    content: bytes = Field(exclude=True, repr=False)
    generated_at: datetime = Field(default_factory=_now_utc)
    degraded: bool = False

    @property
    def extension(self) -> str:
        return self.filename.rsplit(".", 1)[-1] if "." in self.filename else ""


class BillRecord(StrictBaseModel):
    id: str
    patient_id: Optional[str] = None
    filename: str
    total_amount: Money
    format: str
    degraded: bool = False
    generated_at: datetime = Field(default_factory=_now_utc)


class PrescriptionRecord(StrictBaseModel):
    id: str
    patient_id: str = "unknown"
    filename: str
    original_name: str
    size: int
    mime_type: str
    analysis: str = ""
    uploaded_at: datetime = Field(default_factory=_now_utc)


# =========================
# Request payloads
# =========================

class PatientCreatePayload(ApiPayload):
    name: Optional[str] = None
    gender: Optional[str] = None
    clinical_notes: Optional[str] = None
    current_meds: Optional[str] = None


class NotesUpdatePayload(ApiPayload):
    clinical_notes: Optional[str] = None


class SuggestPayload(ApiPayload):
    clinical_notes: Optional[str] = None
    current_meds: Optional[str] = None


class ConsultPayload(ApiPayload):
    message: Optional[str] = None
    patient_data: Optional[PatientData] = None
    icd10_codes: List[Union[str, dict]] = Field(default_factory=list)


class MedicationIn(ApiPayload):
    name: Optional[str] = None
    cost: Any = None
    purpose: Optional[str] = None
    frequency: Optional[str] = None


class GenerateBillPayload(ApiPayload):
    patient_data: Optional[PatientData] = None
    medications: List[MedicationIn] = Field(default_factory=list)
    icd10_codes: List[Union[str, dict]] = Field(default_factory=list)
    ai_suggestions: Optional[str] = None
    # Accepted for compatibility; the server always recomputes.
    total_amount: Any = None
