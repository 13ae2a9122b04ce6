from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import List, Optional


# =============================================================================
# Environment names
# =============================================================================

ENV_DATA_DIR = "MEDBILL_DATA_DIR"
ENV_UPLOADS_DIR = "MEDBILL_UPLOADS_DIR"
ENV_BILLS_DIR = "MEDBILL_BILLS_DIR"
ENV_MODEL = "MEDBILL_MODEL"
ENV_GATEWAY_TIMEOUT = "MEDBILL_GATEWAY_TIMEOUT_SEC"
ENV_RENDER_TIMEOUT = "MEDBILL_RENDER_TIMEOUT_SEC"
ENV_MAX_UPLOAD_BYTES = "MEDBILL_MAX_UPLOAD_BYTES"
ENV_CONSULTATION_FEE = "MEDBILL_CONSULTATION_FEE"
ENV_CODING_FEE = "MEDBILL_CODING_FEE"
ENV_KEYWORDS_PATH = "MEDBILL_ICD10_KEYWORDS_PATH"
ENV_CORS_ORIGINS = "MEDBILL_CORS_ORIGINS"

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_DATA_DIR = os.path.join(PROJECT_ROOT, "data")

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_CONSULTATION_FEE = Decimal("75.00")
DEFAULT_CODING_FEE = Decimal("15.00")
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MB


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip() or default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_money(name: str, default: Decimal) -> Decimal:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return default
    if not value.is_finite() or value < 0:
        return default
    return value.quantize(Decimal("0.01"))


@dataclass(frozen=True)
class Fees:
    consultation: Decimal = DEFAULT_CONSULTATION_FEE
    per_code: Decimal = DEFAULT_CODING_FEE


@dataclass(frozen=True)
class Settings:
    data_dir: str = DEFAULT_DATA_DIR
    uploads_dir: str = os.path.join(DEFAULT_DATA_DIR, "uploads")
    bills_dir: str = os.path.join(DEFAULT_DATA_DIR, "bills")

    openai_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    gateway_timeout_sec: float = 30.0
    render_timeout_sec: float = 20.0

    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    fees: Fees = field(default_factory=Fees)
    keywords_path: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def usage_log_dir(self) -> str:
        return os.path.join(self.data_dir, "usage_logs")

    def with_dirs(self, base_dir: str) -> "Settings":
        """Same settings with every artifact directory rooted at base_dir."""
        return replace(
            self,
            data_dir=base_dir,
            uploads_dir=os.path.join(base_dir, "uploads"),
            bills_dir=os.path.join(base_dir, "bills"),
        )


def load_settings() -> Settings:
    data_dir = _env_str(ENV_DATA_DIR, DEFAULT_DATA_DIR)
    origins = [o.strip() for o in _env_str(ENV_CORS_ORIGINS, "*").split(",") if o.strip()]
    return Settings(
        data_dir=data_dir,
        uploads_dir=_env_str(ENV_UPLOADS_DIR, os.path.join(data_dir, "uploads")),
        bills_dir=_env_str(ENV_BILLS_DIR, os.path.join(data_dir, "bills")),
        openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
        model=_env_str(ENV_MODEL, DEFAULT_MODEL),
        gateway_timeout_sec=_env_float(ENV_GATEWAY_TIMEOUT, 30.0),
        render_timeout_sec=_env_float(ENV_RENDER_TIMEOUT, 20.0),
        max_upload_bytes=_env_int(ENV_MAX_UPLOAD_BYTES, DEFAULT_MAX_UPLOAD_BYTES),
        fees=Fees(
            consultation=_env_money(ENV_CONSULTATION_FEE, DEFAULT_CONSULTATION_FEE),
            per_code=_env_money(ENV_CODING_FEE, DEFAULT_CODING_FEE),
        ),
        keywords_path=_env_str(ENV_KEYWORDS_PATH) or None,
        cors_origins=origins or ["*"],
    )
