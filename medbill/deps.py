from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from medbill.artifact_store import ArtifactStore
from medbill.config import Settings
from medbill.document import BillRenderer
from medbill.gateway import SuggestionGateway
from medbill.repository import BillRepository, PatientRepository, PrescriptionRepository
from medbill.usage_log import UsageLogger


@dataclass
class Services:
    """
    Everything a request handler needs, built once per app in create_app()
    and handed to routes through Depends(get_services).
    """
    settings: Settings
    patients: PatientRepository
    prescriptions: PrescriptionRepository
    bills: BillRepository
    gateway: SuggestionGateway
    renderer: BillRenderer
    bill_store: ArtifactStore
    upload_store: ArtifactStore
    usage: UsageLogger


def build_services(
    settings: Settings,
    gateway: Optional[SuggestionGateway] = None,
    renderer: Optional[BillRenderer] = None,
) -> Services:
    return Services(
        settings=settings,
        patients=PatientRepository(),
        prescriptions=PrescriptionRepository(),
        bills=BillRepository(),
        gateway=gateway or SuggestionGateway(
            model=settings.model,
            api_key=settings.openai_api_key,
            timeout_sec=settings.gateway_timeout_sec,
        ),
        renderer=renderer or BillRenderer(),
        bill_store=ArtifactStore(settings.bills_dir),
        upload_store=ArtifactStore(settings.uploads_dir),
        usage=UsageLogger(settings.usage_log_dir),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
