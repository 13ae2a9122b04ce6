from typing import List, Optional, Tuple

import fitz  # PyMuPDF


def extract_pdf_pages(path: Optional[str] = None, data: Optional[bytes] = None) -> List[Tuple[int, str]]:
    """
    (page_number, text) for every page. Reads from a file path or from raw bytes.
    """
    pages: List[Tuple[int, str]] = []
    if data is not None:
        doc = fitz.open(stream=data, filetype="pdf")
    elif path:
        doc = fitz.open(path)
    else:
        return pages
    with doc:
        for i, page in enumerate(doc):
            text = page.get_text("text") or ""
            pages.append((i + 1, text))
    return pages


def extract_pdf_text(path: Optional[str] = None, data: Optional[bytes] = None, max_chars: int = 0) -> str:
    text = "\n".join(t for _, t in extract_pdf_pages(path=path, data=data))
    if max_chars and len(text) > max_chars:
        return text[:max_chars]
    return text
