from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from medbill.errors import RenderError
from medbill.models import Artifact, EncounterSnapshot
from medbill.pdf_utils import extract_pdf_text

from .pdf import render_pdf
from .sections import Section, build_sections
from .text import parse_text_total, render_text

logger = logging.getLogger("medbill.document")

SectionRenderer = Callable[[Sequence[Section]], bytes]

PDF_MEDIA_TYPE = "application/pdf"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"

# Failures a renderer may raise that should trigger the fallback medium.
_RENDER_FAILURES = (RenderError, OSError, UnicodeError, ValueError)


def _read_pdf_total(content: bytes) -> Decimal:
    try:
        text = extract_pdf_text(data=content)
    except Exception as e:
        raise RenderError(f"Rendered PDF could not be read back: {e}") from e
    return parse_text_total(text)


def _read_text_total(content: bytes) -> Decimal:
    return parse_text_total(content.decode("utf-8"))


def _verify_total(content: bytes, reader: Callable[[bytes], Decimal], expected: Decimal) -> None:
    found = reader(content)
    if found != expected:
        raise RenderError(f"Rendered total {found} does not match computed total {expected}")


class BillRenderer:
    """
    Renders an EncounterSnapshot into an Artifact.

    The primary medium is PDF and the fallback is flat text. The pair is
    chosen once, when the app is built. Every artifact has its total read back
    and checked against the computed summary before it is returned.
    """

    def __init__(
        self,
        primary: SectionRenderer = render_pdf,
        fallback: SectionRenderer = render_text,
        primary_reader: Callable[[bytes], Decimal] = _read_pdf_total,
        fallback_reader: Callable[[bytes], Decimal] = _read_text_total,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.primary_reader = primary_reader
        self.fallback_reader = fallback_reader

    def sections(self, snapshot: EncounterSnapshot, bill_id: str) -> List[Section]:
        return build_sections(snapshot, bill_id)

    def render_primary(self, snapshot: EncounterSnapshot, bill_id: str, encounter_id: Optional[str] = None) -> Artifact:
        content = self.primary(self.sections(snapshot, bill_id))
        _verify_total(content, self.primary_reader, snapshot.summary.grand_total)
        return Artifact(
            bill_id=bill_id,
            encounter_id=encounter_id,
            filename=f"{bill_id}.pdf",
            media_type=PDF_MEDIA_TYPE,
            content=content,
            generated_at=snapshot.generated_at,
        )

    def render_fallback(self, snapshot: EncounterSnapshot, bill_id: str, encounter_id: Optional[str] = None) -> Artifact:
        try:
            content = self.fallback(self.sections(snapshot, bill_id))
            _verify_total(content, self.fallback_reader, snapshot.summary.grand_total)
        except _RENDER_FAILURES as e:
            logger.error("bill.render fallback failed bill_id=%s: %s", bill_id, e)
            raise RenderError(f"Bill rendering failed: {e}") from e
        return Artifact(
            bill_id=bill_id,
            encounter_id=encounter_id,
            filename=f"{bill_id}.txt",
            media_type=TEXT_MEDIA_TYPE,
            content=content,
            generated_at=snapshot.generated_at,
            degraded=True,
        )

    def render(self, snapshot: EncounterSnapshot, bill_id: str, encounter_id: Optional[str] = None) -> Artifact:
        try:
            return self.render_primary(snapshot, bill_id, encounter_id)
        except _RENDER_FAILURES as e:
            logger.warning("bill.render primary failed bill_id=%s, using text fallback: %s", bill_id, e)
        return self.render_fallback(snapshot, bill_id, encounter_id)


def render_bill(snapshot: EncounterSnapshot, bill_id: str, encounter_id: Optional[str] = None) -> Artifact:
    """PDF with text fallback, using the default renderer pair."""
    return BillRenderer().render(snapshot, bill_id, encounter_id)
