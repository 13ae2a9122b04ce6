from __future__ import annotations

import json
import logging
import os
import re
import threading
from typing import Any, Dict, List, Optional, Tuple

from medbill.models import ICD10_PATTERN, DiagnosisCode, LineItem

logger = logging.getLogger("medbill.icd10")

_LOCK = threading.Lock()

ENV_KEYWORDS_PATH = "MEDBILL_ICD10_KEYWORDS_PATH"

UNSPECIFIED_CODE = "R69"

CODE_LABELS: Dict[str, str] = {
    "J06.9": "Acute upper respiratory infection, unspecified",
    "R50.9": "Fever, unspecified",
    "I10": "Essential (primary) hypertension",
    "E11.9": "Type 2 diabetes mellitus without complications",
    "R51": "Headache",
    "R52": "Pain, unspecified",
    "R69": "Illness, unspecified",
}

# Ordered: output follows this order, not the order words appear in the notes.
DEFAULT_KEYWORD_RULES: List[Tuple[str, str]] = [
    ("respiratory", "J06.9"),
    ("cough", "J06.9"),
    ("cold", "J06.9"),
    ("fever", "R50.9"),
    ("hypertension", "I10"),
    ("blood pressure", "I10"),
    ("diabetes", "E11.9"),
    ("headache", "R51"),
    ("pain", "R52"),
]

# (all keywords must match, medication)
DEFAULT_MEDICATION_RULES: List[Tuple[Tuple[str, ...], List[Dict[str, Any]]]] = [
    (("hypertension",), [
        {"name": "Lisinopril 10mg", "cost": "22.00", "frequency": "Once daily", "purpose": "Blood pressure control"},
    ]),
    (("infection", "bacterial"), [
        {
            "name": "Amoxicillin 500mg",
            "cost": "35.00",
            "frequency": "Three times daily for 7 days",
            "purpose": "Antibiotic for bacterial infection",
        },
    ]),
]

_RESPIRATORY_WORDS = ("respiratory", "cough", "cold")
_RESPIRATORY_MEDS: List[Dict[str, Any]] = [
    {"name": "Acetaminophen 500mg", "cost": "15.00", "frequency": "Every 6 hours as needed", "purpose": "Fever and pain relief"},
    {"name": "Dextromethorphan 15mg", "cost": "12.50", "frequency": "Every 4-6 hours", "purpose": "Cough suppression"},
    {"name": "Guaifenesin 400mg", "cost": "18.00", "frequency": "Every 4 hours", "purpose": "Mucus clearance"},
]

_KEYWORD_RULES: Optional[List[Tuple[str, str]]] = None


def normalize_text(text: str) -> str:
    s = (text or "").lower()
    s = re.sub(r"[^a-z0-9]+", " ", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def is_valid_code(token: str) -> bool:
    return bool(ICD10_PATTERN.match((token or "").strip().upper()))


def _has_keyword(text_norm: str, keyword: str) -> bool:
    kw = normalize_text(keyword)
    if not kw:
        return False
    # substring match: "fevers", "coughing", "headaches" all count
    return kw in text_norm


def _rules_from_json(data: Any) -> List[Tuple[str, str]]:
    """
    Accepts {"fever": ["R50.9"], ...} or [{"keyword": "fever", "codes": ["R50.9"]}, ...].
    Codes that aren't valid ICD-10 tokens are skipped.
    """
    out: List[Tuple[str, str]] = []
    if isinstance(data, dict):
        items = list(data.items())
    elif isinstance(data, list):
        items = []
        for row in data:
            if not isinstance(row, dict):
                continue
            items.append((row.get("keyword") or row.get("term") or "", row.get("codes") or row.get("code") or []))
    else:
        return out

    for kw, codes in items:
        kw = str(kw or "").strip().lower()
        if isinstance(codes, str):
            codes = re.split(r"[|,]", codes)
        for code in codes or []:
            code = str(code).strip().upper()
            if kw and is_valid_code(code):
                out.append((kw, code))
    return out


def load_keyword_rules(path_override: Optional[str] = None, force: bool = False) -> List[Tuple[str, str]]:
    global _KEYWORD_RULES
    with _LOCK:
        if _KEYWORD_RULES is not None and not force:
            return _KEYWORD_RULES

        path = path_override or (os.getenv(ENV_KEYWORDS_PATH) or "").strip()
        rules: List[Tuple[str, str]] = []
        if path and os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    rules = _rules_from_json(json.load(f))
            except (OSError, ValueError) as e:
                logger.warning("ICD-10 keyword file %s unreadable, using defaults: %s", path, e)
                rules = []
        _KEYWORD_RULES = rules or list(DEFAULT_KEYWORD_RULES)
        return _KEYWORD_RULES


def reset_keyword_cache() -> None:
    global _KEYWORD_RULES
    with _LOCK:
        _KEYWORD_RULES = None


def fallback_codes(clinical_notes: str) -> List[DiagnosisCode]:
    """
    Local rule table used when the model can't be reached or answers garbage.
    Never empty: nothing matched means R69.
    """
    text_norm = normalize_text(clinical_notes)
    out: List[DiagnosisCode] = []
    seen: set[str] = set()

    for kw, code in load_keyword_rules():
        if code in seen or not _has_keyword(text_norm, kw):
            continue
        out.append(DiagnosisCode(code=code, label=CODE_LABELS.get(code, "")))
        seen.add(code)

    if not out:
        out.append(DiagnosisCode(code=UNSPECIFIED_CODE, label=CODE_LABELS[UNSPECIFIED_CODE]))
    return out


def fallback_medications(clinical_notes: str) -> List[LineItem]:
    text_norm = normalize_text(clinical_notes)
    rows: List[Dict[str, Any]] = []

    if any(_has_keyword(text_norm, w) for w in _RESPIRATORY_WORDS):
        rows.extend(_RESPIRATORY_MEDS)
    for words, meds in DEFAULT_MEDICATION_RULES:
        if all(_has_keyword(text_norm, w) for w in words):
            rows.extend(meds)

    return [LineItem(**row) for row in rows]
