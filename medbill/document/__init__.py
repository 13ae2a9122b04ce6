from .pdf import render_pdf
from .renderer import BillRenderer, render_bill
from .sections import Line, Section, build_sections
from .text import parse_text_total, render_text

__all__ = [
    "BillRenderer",
    "Line",
    "Section",
    "build_sections",
    "parse_text_total",
    "render_bill",
    "render_pdf",
    "render_text",
]
