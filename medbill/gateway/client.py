from __future__ import annotations

import base64
import json
import logging
import re
import threading
from typing import Any, Dict, Iterable, List, Optional

from openai import OpenAI
from pydantic import ValidationError as PydanticValidationError

from medbill.config import DEFAULT_MODEL
from medbill.errors import GatewayError
from medbill.models import DiagnosisCode, LineItem, PatientData
from medbill.pdf_utils import extract_pdf_text

from .prompts import (
    ANALYSIS_SYSTEM,
    ANALYSIS_USER,
    CODES_SYSTEM,
    CODES_USER,
    CONSULT_SYSTEM,
    CONSULT_USER,
    MEDICATIONS_SYSTEM,
    MEDICATIONS_USER,
)

logger = logging.getLogger("medbill.gateway")

MAX_SUGGESTED_CODES = 5
MAX_SUGGESTED_MEDICATIONS = 6
MAX_DOCUMENT_CHARS = 12000

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


# =========================
# Reply parsing
# =========================

def strip_code_fences(text: str) -> str:
    """Models like to wrap JSON in ```json ... ``` even when told not to."""
    return _FENCE_RE.sub("", (text or "").strip()).strip()


def _load_json(text: str) -> Any:
    raw = strip_code_fences(text)
    if not raw:
        raise GatewayError("Empty model reply")
    try:
        return json.loads(raw)
    except ValueError as e:
        raise GatewayError(f"Model reply is not JSON: {e}") from e


def _unwrap_list(data: Any, key: str) -> List[Any]:
    if isinstance(data, dict):
        data = data.get(key)
    if not isinstance(data, list):
        raise GatewayError(f"Model reply has no '{key}' list")
    return data


def parse_code_reply(text: str, limit: int = MAX_SUGGESTED_CODES) -> List[DiagnosisCode]:
    """
    Accepts {"codes": [...]} or a bare list; entries may be "J06.9 - label"
    strings or {"code", "label"} objects. Malformed entries are dropped.
    Raises GatewayError when nothing valid is left.
    """
    out: List[DiagnosisCode] = []
    seen: set[str] = set()
    for entry in _unwrap_list(_load_json(text), "codes"):
        try:
            code = DiagnosisCode.from_token(entry)
        except PydanticValidationError:
            logger.debug("gateway.codes dropped malformed entry %r", entry)
            continue
        if code.code in seen:
            continue
        seen.add(code.code)
        out.append(code)
        if len(out) >= limit:
            break
    if not out:
        raise GatewayError("Model reply contained no valid ICD-10 codes")
    return out


def parse_medication_reply(text: str, limit: int = MAX_SUGGESTED_MEDICATIONS) -> List[LineItem]:
    out: List[LineItem] = []
    for entry in _unwrap_list(_load_json(text), "medications"):
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "").strip()
        if not name:
            continue
        out.append(LineItem(
            name=name,
            cost=entry.get("cost"),
            purpose=(str(entry["purpose"]).strip() if entry.get("purpose") else None),
            frequency=(str(entry["frequency"]).strip() if entry.get("frequency") else None),
        ))
        if len(out) >= limit:
            break
    if not out:
        raise GatewayError("Model reply contained no medications")
    return out


def _codes_text(codes: Iterable[Any]) -> str:
    items = []
    for c in codes or []:
        if isinstance(c, DiagnosisCode):
            items.append(c.display())
        elif isinstance(c, dict):
            items.append(str(c.get("code") or "").strip())
        else:
            items.append(str(c).strip())
    items = [i for i in items if i]
    return ", ".join(items) if items else "None"


# =========================
# Gateway
# =========================

class SuggestionGateway:
    """
    Thin wrapper over OpenAI chat completions. Every method either returns
    parsed content or raises GatewayError; falling back is the caller's call.
    """

    def __init__(
        self,
        client: Any = None,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        timeout_sec: float = 30.0,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._lock = threading.Lock()
        self.model = model
        self.timeout_sec = timeout_sec

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> Any:
        with self._lock:
            if self._client is None:
                if not self._api_key:
                    raise GatewayError("OPENAI_API_KEY not set")
                self._client = OpenAI(api_key=self._api_key, timeout=self.timeout_sec, max_retries=1)
            return self._client

    def _complete(self, stage: str, messages: List[Dict[str, Any]], json_mode: bool = False) -> str:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.2,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        client = self._get_client()
        try:
            response = client.chat.completions.create(**kwargs)
        except Exception as e:
            logger.info("gateway.%s model=%s ok=False error=%s", stage, self.model, e)
            raise GatewayError(f"Model call failed ({stage}): {e}") from e
        try:
            text = (response.choices[0].message.content or "").strip()
        except (AttributeError, IndexError, TypeError) as e:
            raise GatewayError(f"Unexpected model response shape ({stage})") from e
        logger.info("gateway.%s model=%s ok=True chars=%s", stage, self.model, len(text))
        if not text:
            raise GatewayError(f"Empty model reply ({stage})")
        return text

    # ---- suggestions ----

    def suggest_codes(self, clinical_notes: str) -> List[DiagnosisCode]:
        raw = self._complete(
            "codes",
            [
                {"role": "system", "content": CODES_SYSTEM},
                {"role": "user", "content": CODES_USER.format(notes=clinical_notes, max_codes=MAX_SUGGESTED_CODES)},
            ],
            json_mode=True,
        )
        return parse_code_reply(raw)

    def suggest_medications(self, clinical_notes: str, current_meds: str = "") -> List[LineItem]:
        raw = self._complete(
            "medications",
            [
                {"role": "system", "content": MEDICATIONS_SYSTEM},
                {"role": "user", "content": MEDICATIONS_USER.format(
                    notes=clinical_notes,
                    current_meds=(current_meds or "None"),
                )},
            ],
            json_mode=True,
        )
        return parse_medication_reply(raw)

    # ---- free text ----

    def analyze_document(self, patient: PatientData, path: str, mime: str, original_name: str = "") -> str:
        """
        Images go to the model as data URLs; PDFs and text files as extracted text.
        """
        document_text = ""
        image_part: Optional[Dict[str, Any]] = None
        try:
            if mime.startswith("image/"):
                with open(path, "rb") as f:
                    b64 = base64.b64encode(f.read()).decode("ascii")
                image_part = {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{b64}"}}
            elif mime == "application/pdf":
                document_text = extract_pdf_text(path=path, max_chars=MAX_DOCUMENT_CHARS)
            else:
                with open(path, "r", encoding="utf-8", errors="replace") as f:
                    document_text = f.read(MAX_DOCUMENT_CHARS)
        except Exception as e:
            logger.warning("gateway.analysis could not read %s: %s", path, e)
            document_text = f"[Error reading attached file: {e}]"

        prompt = ANALYSIS_USER.format(
            name=patient.name or "Unknown Patient",
            gender=patient.gender or "Unknown",
            notes=patient.clinical_notes or "No clinical notes provided",
            current_meds=patient.current_meds or "No current medications",
            filename=original_name or "upload",
            mime=mime,
            document_text=(f"Document text:\n{document_text}\n" if document_text.strip() else ""),
        )
        content: Any = prompt
        if image_part is not None:
            content = [{"type": "text", "text": prompt}, image_part]

        return self._complete(
            "analysis",
            [
                {"role": "system", "content": ANALYSIS_SYSTEM},
                {"role": "user", "content": content},
            ],
        )

    def consult(self, message: str, patient: Optional[PatientData] = None, codes: Iterable[Any] = ()) -> str:
        patient = patient or PatientData()
        return self._complete(
            "consult",
            [
                {"role": "system", "content": CONSULT_SYSTEM},
                {"role": "user", "content": CONSULT_USER.format(
                    name=patient.name or "Unknown",
                    gender=patient.gender or "Unknown",
                    notes=patient.clinical_notes or "None",
                    codes=_codes_text(codes),
                    message=message,
                )},
            ],
        )
