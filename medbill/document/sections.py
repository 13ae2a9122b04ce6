from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from medbill.models import EncounterSnapshot, format_money

TITLE = "MEDICAL BILLING STATEMENT"
TOTAL_LABEL = "TOTAL AMOUNT:"
ESCAPED_TOTAL_LABEL = "Total amount:"
_TOTAL_LABEL_RE = re.compile(r"TOTAL\s+AMOUNT\s*:")

NO_MEDICATIONS = "No medications listed"
NO_CODES = "No ICD-10 codes provided"
NO_RECOMMENDATIONS = "No recommendations provided"
NOT_PROVIDED = "Not provided"

FOOTER_LINES = (
    "This is an AI-assisted medical bill. Please verify all information with healthcare professionals.",
    "Generated by MedBill",
)


@dataclass(frozen=True)
class Line:
    text: str
    indent: int = 0
    align: str = "left"  # left | center | right
    emphasis: bool = False
    muted: bool = False


@dataclass(frozen=True)
class Section:
    """
    One block of the bill. kind drives typography in the PDF renderer:
    title | body | notes | total | footer.
    """
    key: str
    kind: str
    heading: Optional[str] = None
    lines: Tuple[Line, ...] = field(default_factory=tuple)


def free_text(value: Optional[str]) -> str:
    """
    User or model supplied text. The total label is reserved for the total
    section, so copies of it elsewhere are lowered to keep read-back unambiguous.
    """
    return _TOTAL_LABEL_RE.sub(ESCAPED_TOTAL_LABEL, (value or "").strip())


def _or_placeholder(value: Optional[str], placeholder: str = NOT_PROVIDED) -> str:
    return free_text(value) or placeholder


def total_line(snapshot: EncounterSnapshot) -> str:
    return f"{TOTAL_LABEL} {format_money(snapshot.summary.grand_total)}"


def build_sections(snapshot: EncounterSnapshot, bill_id: str = "") -> List[Section]:
    """
    Fixed top-to-bottom layout shared by every output medium:
    header, patient, charges, codes, recommendations, total, footer.
    """
    summary = snapshot.summary
    patient = snapshot.patient
    sections: List[Section] = []

    header = [Line(TITLE, align="center", emphasis=True)]
    meta = f"Date: {snapshot.generated_at.strftime('%Y-%m-%d')}"
    if bill_id:
        meta += f"   Bill ID: {bill_id}"
    header.append(Line(meta, align="center"))
    sections.append(Section(key="header", kind="title", lines=tuple(header)))

    sections.append(Section(
        key="patient",
        kind="body",
        heading="PATIENT INFORMATION",
        lines=(
            Line(f"Name: {_or_placeholder(patient.name)}", indent=1),
            Line(f"Gender: {_or_placeholder(patient.gender)}", indent=1),
            Line(f"Clinical Notes: {_or_placeholder(patient.clinical_notes)}", indent=1),
            Line(f"Current Medications: {_or_placeholder(patient.current_meds, 'None')}", indent=1),
        ),
    ))

    charges: List[Line] = []
    if snapshot.line_items:
        for idx, item in enumerate(snapshot.line_items, start=1):
            name = free_text(item.name) or "Unnamed medication"
            text = f"{idx}. {name} - {format_money(item.cost)}"
            if not item.is_billable:
                text += " (cost missing)"
            charges.append(Line(text, indent=1))
    else:
        charges.append(Line(NO_MEDICATIONS, indent=1))
    charges.append(Line(f"Consultation Fee: {format_money(summary.consultation_fee)}", indent=1))
    plural = "code" if summary.code_count == 1 else "codes"
    charges.append(Line(f"Medical Coding ({summary.code_count} {plural}): {format_money(summary.coding_fee)}", indent=1))
    sections.append(Section(key="charges", kind="body", heading="MEDICATIONS & CHARGES", lines=tuple(charges)))

    if snapshot.codes:
        code_lines = tuple(Line(f"{idx}. {free_text(code.display())}", indent=1) for idx, code in enumerate(snapshot.codes, start=1))
    else:
        code_lines = (Line(NO_CODES, indent=1),)
    sections.append(Section(key="codes", kind="body", heading="ICD-10 CODES", lines=code_lines))

    notes = [free_text(ln) for ln in (snapshot.ai_notes or "").splitlines() if ln.strip()]
    note_lines = tuple(Line(ln, indent=1) for ln in notes) or (Line(NO_RECOMMENDATIONS, indent=1),)
    sections.append(Section(key="recommendations", kind="notes", heading="AI RECOMMENDATIONS", lines=note_lines))

    sections.append(Section(
        key="total",
        kind="total",
        lines=(Line(total_line(snapshot), align="right", emphasis=True),),
    ))

    sections.append(Section(
        key="footer",
        kind="footer",
        lines=tuple(Line(t, align="center", muted=True) for t in FOOTER_LINES),
    ))
    return sections
