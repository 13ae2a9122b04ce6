from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, TypeVar

from medbill.errors import GatewayError
from medbill.icd10 import fallback_codes, fallback_medications
from medbill.models import DiagnosisCode, LineItem, PatientData

from .client import SuggestionGateway

logger = logging.getLogger("medbill.gateway")

T = TypeVar("T")

SOURCE_MODEL = "model"
SOURCE_FALLBACK = "fallback"

ANALYSIS_UNAVAILABLE = "AI analysis is currently unavailable. Please try again later."


@dataclass
class SuggestionResult(Generic[T]):
    items: List[T] = field(default_factory=list)
    source: str = SOURCE_MODEL

    @property
    def degraded(self) -> bool:
        return self.source == SOURCE_FALLBACK


async def call_with_timeout(fn: Callable[..., T], *args: Any, timeout: float) -> T:
    """
    Runs a blocking gateway call in a worker thread. Timeouts surface as
    GatewayError so callers only have one failure type to handle.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)
    except asyncio.TimeoutError as e:
        name = getattr(fn, "__name__", "gateway call")
        raise GatewayError(f"{name} timed out after {timeout:g}s") from e


async def suggest_codes(gateway: SuggestionGateway, clinical_notes: str, timeout: float) -> SuggestionResult[DiagnosisCode]:
    try:
        codes = await call_with_timeout(gateway.suggest_codes, clinical_notes, timeout=timeout)
        return SuggestionResult(items=codes, source=SOURCE_MODEL)
    except GatewayError as e:
        logger.warning("gateway.codes degraded to keyword rules: %s", e)
        return SuggestionResult(items=fallback_codes(clinical_notes), source=SOURCE_FALLBACK)


async def suggest_medications(
    gateway: SuggestionGateway,
    clinical_notes: str,
    current_meds: str,
    timeout: float,
) -> SuggestionResult[LineItem]:
    try:
        meds = await call_with_timeout(gateway.suggest_medications, clinical_notes, current_meds, timeout=timeout)
        return SuggestionResult(items=meds, source=SOURCE_MODEL)
    except GatewayError as e:
        logger.warning("gateway.medications degraded to keyword rules: %s", e)
        return SuggestionResult(items=fallback_medications(clinical_notes), source=SOURCE_FALLBACK)


async def analyze_upload(
    gateway: SuggestionGateway,
    patient: PatientData,
    path: str,
    mime: str,
    original_name: str,
    timeout: float,
) -> SuggestionResult[str]:
    try:
        text = await call_with_timeout(gateway.analyze_document, patient, path, mime, original_name, timeout=timeout)
        return SuggestionResult(items=[text], source=SOURCE_MODEL)
    except GatewayError as e:
        logger.warning("gateway.analysis unavailable: %s", e)
        return SuggestionResult(items=[ANALYSIS_UNAVAILABLE], source=SOURCE_FALLBACK)
