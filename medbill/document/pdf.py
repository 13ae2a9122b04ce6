from __future__ import annotations

from typing import List, Sequence, Tuple

import fitz  # PyMuPDF

from medbill.errors import RenderError

from .sections import Line, Section

PAGE_WIDTH, PAGE_HEIGHT = fitz.paper_size("a4")
MARGIN = 50
INDENT_PT = 20
LEADING = 1.4

FONT_REGULAR = "helv"
FONT_BOLD = "hebo"

BLACK = (0, 0, 0)
BLUE = (0, 0.48, 1)
DARK = (0.2, 0.2, 0.2)
RED = (0.85, 0.33, 0.31)
GRAY = (0.5, 0.5, 0.5)

# kind -> (font size, bold, color) for body lines
_STYLES = {
    "title": (20, True, BLUE),
    "body": (10, False, BLACK),
    "notes": (9, False, BLACK),
    "total": (16, True, RED),
    "footer": (8, False, GRAY),
}
HEADING_STYLE = (14, True, DARK)

_PUNCT = str.maketrans({
    "–": "-",
    "—": "-",
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "•": "*",
    "…": "...",
})


def _pdf_safe(text: str) -> str:
    """
    Base-14 fonts only cover Latin-1. Common typographic punctuation is mapped;
    anything else is an encoding failure and the caller falls back to text.
    """
    s = (text or "").translate(_PUNCT)
    try:
        s.encode("latin-1")
    except UnicodeEncodeError as e:
        raise RenderError(f"Text not representable in PDF base fonts: {s[e.start:e.end]!r}") from e
    return s


def _text_width(text: str, font: str, size: float) -> float:
    return fitz.get_text_length(text, fontname=font, fontsize=size)


def _break_word(word: str, font: str, size: float, max_width: float) -> List[str]:
    parts: List[str] = []
    current = ""
    for ch in word:
        if current and _text_width(current + ch, font, size) > max_width:
            parts.append(current)
            current = ch
        else:
            current += ch
    if current:
        parts.append(current)
    return parts


def wrap_to_width(text: str, font: str, size: float, max_width: float) -> List[str]:
    lines: List[str] = []
    current = ""
    for word in text.split():
        if _text_width(word, font, size) > max_width:
            if current:
                lines.append(current)
                current = ""
            pieces = _break_word(word, font, size, max_width)
            lines.extend(pieces[:-1])
            current = pieces[-1]
            continue
        candidate = f"{current} {word}" if current else word
        if _text_width(candidate, font, size) <= max_width:
            current = candidate
        else:
            lines.append(current)
            current = word
    if current or not lines:
        lines.append(current)
    return lines


class _Cursor:
    """Tracks the current page and baseline; adds pages as text runs off the bottom."""

    def __init__(self, doc: "fitz.Document") -> None:
        self.doc = doc
        self.page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        self.y = MARGIN

    def write(self, text: str, style: Tuple[float, bool, tuple], align: str = "left", indent: int = 0) -> None:
        size, bold, color = style
        font = FONT_BOLD if bold else FONT_REGULAR
        left = MARGIN + indent * INDENT_PT
        usable = PAGE_WIDTH - MARGIN - left
        for chunk in wrap_to_width(_pdf_safe(text), font, size, usable):
            if self.y + size * LEADING > PAGE_HEIGHT - MARGIN:
                self.page = self.doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
                self.y = MARGIN
            width = _text_width(chunk, font, size)
            if align == "center":
                x = (PAGE_WIDTH - width) / 2
            elif align == "right":
                x = PAGE_WIDTH - MARGIN - width
            else:
                x = left
            self.page.insert_text((x, self.y + size), chunk, fontsize=size, fontname=font, color=color)
            self.y += size * LEADING

    def gap(self, points: float) -> None:
        self.y += points


def _line_style(kind: str, line: Line) -> Tuple[float, bool, tuple]:
    size, bold, color = _STYLES.get(kind, _STYLES["body"])
    if kind == "title" and not line.emphasis:
        return 10, False, BLACK
    if line.muted:
        color = GRAY
    return size, bold or line.emphasis, color


def render_pdf(sections: Sequence[Section]) -> bytes:
    doc = fitz.open()
    try:
        cursor = _Cursor(doc)
        for section in sections:
            if section.heading:
                cursor.write(section.heading, HEADING_STYLE)
                cursor.gap(4)
            for line in section.lines:
                cursor.write(line.text, _line_style(section.kind, line), align=line.align, indent=line.indent)
            cursor.gap(14)
        return doc.tobytes(garbage=3, deflate=True)
    except RenderError:
        raise
    except Exception as e:
        raise RenderError(f"PDF rendering failed: {e}") from e
    finally:
        doc.close()
