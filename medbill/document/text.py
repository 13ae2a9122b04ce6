from __future__ import annotations

import re
import textwrap
from decimal import Decimal, InvalidOperation
from typing import List, Sequence

from medbill.errors import RenderError

from .sections import TOTAL_LABEL, Section

TEXT_WIDTH = 78
INDENT = "  "

_TOTAL_RE = re.compile(re.escape(TOTAL_LABEL) + r"\s*\$([0-9][0-9,]*\.[0-9]{2})")


def _wrap(text: str, width: int) -> List[str]:
    # Long tokens (URLs, drug lists without spaces) are broken, never cut off.
    return textwrap.wrap(
        text,
        width=max(10, width),
        break_long_words=True,
        break_on_hyphens=False,
    ) or [""]


def _place(text: str, align: str, width: int) -> str:
    if align == "center":
        return text.center(width).rstrip()
    if align == "right":
        return text.rjust(width)
    return text


def render_text(sections: Sequence[Section], width: int = TEXT_WIDTH) -> bytes:
    out: List[str] = []
    for section in sections:
        if out:
            out.append("")
        if section.kind == "title":
            out.append("=" * width)
        if section.heading:
            out.append(section.heading)
            out.append("-" * len(section.heading))
        for line in section.lines:
            prefix = INDENT * line.indent
            for chunk in _wrap(line.text, width - len(prefix)):
                out.append(_place(prefix + chunk, line.align, width))
        if section.kind == "title":
            out.append("=" * width)
    return ("\n".join(out) + "\n").encode("utf-8")


def parse_text_total(text: str) -> Decimal:
    """
    Reads the single TOTAL AMOUNT line back out of a rendered bill.
    """
    matches = _TOTAL_RE.findall(text or "")
    if len(matches) != 1:
        raise RenderError(f"Expected exactly one total line, found {len(matches)}")
    try:
        return Decimal(matches[0].replace(",", ""))
    except InvalidOperation as e:
        raise RenderError(f"Unreadable total: {matches[0]!r}") from e
