from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

from medbill.artifact_store import new_artifact_id, validate_upload
from medbill.billing import check_client_total, ensure_billable
from medbill.code_store import EncounterBilling
from medbill.deps import Services, get_services
from medbill.errors import GatewayError, MedbillError, ValidationError
from medbill.gateway import analyze_upload, suggest_codes, suggest_medications
from medbill.gateway.service import call_with_timeout
from medbill.models import (
    Artifact,
    BillRecord,
    ConsultPayload,
    EncounterSnapshot,
    GenerateBillPayload,
    NotesUpdatePayload,
    PatientCreatePayload,
    PatientData,
    PrescriptionRecord,
    SuggestPayload,
)

# NOTE: /api prefix is applied in main.py; files_router is mounted at the root.
router = APIRouter()
files_router = APIRouter()
logger = logging.getLogger("medbill.api")

MIN_NOTES_CHARS = 5


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _dump_all(models: List[BaseModel]) -> List[Dict[str, Any]]:
    return [_dump(m) for m in models]


def _required_notes(payload: SuggestPayload) -> str:
    notes = (payload.clinical_notes or "").strip()
    if not notes:
        raise ValidationError("Clinical notes are required")
    return notes


# =========================
# Patients
# =========================

@router.post("/patients")
def create_patient(payload: PatientCreatePayload, services: Services = Depends(get_services)):
    name = (payload.name or "").strip()
    gender = (payload.gender or "").strip()
    notes = (payload.clinical_notes or "").strip()
    if not name or not gender or not notes:
        raise ValidationError("Name, gender and clinical notes are required")

    patient = services.patients.create(
        name=name,
        gender=gender,
        clinical_notes=notes,
        current_meds=(payload.current_meds or "").strip(),
    )
    logger.info("patient.saved id=%s", patient.id)
    services.usage.log_event("patient_saved")
    return {
        "success": True,
        "patient": _dump(patient),
        "message": "Patient information saved successfully",
    }


@router.get("/patients")
def list_patients(services: Services = Depends(get_services)):
    patients = services.patients.list()
    return {"success": True, "patients": _dump_all(patients), "count": len(patients)}


@router.get("/patients/{patient_id}")
def get_patient(patient_id: str, services: Services = Depends(get_services)):
    return {"success": True, "patient": _dump(services.patients.get_or_404(patient_id))}


@router.put("/patients/{patient_id}/notes")
def update_patient_notes(patient_id: str, payload: NotesUpdatePayload, services: Services = Depends(get_services)):
    patient = services.patients.update_notes(patient_id, payload.clinical_notes or "")
    return {"success": True, "patient": _dump(patient)}


# =========================
# Suggestions
# =========================

@router.post("/auto-suggest-codes")
async def auto_suggest_codes(payload: SuggestPayload, services: Services = Depends(get_services)):
    notes = (payload.clinical_notes or "").strip()
    if len(notes) < MIN_NOTES_CHARS:
        raise ValidationError(
            f"Clinical notes are required and should be at least {MIN_NOTES_CHARS} characters long"
        )

    result = await suggest_codes(services.gateway, notes, timeout=services.settings.gateway_timeout_sec)
    services.usage.log_event("codes_suggested", meta={"source": result.source, "count": len(result.items)})
    return {
        "success": True,
        "suggestedCodes": _dump_all(result.items),
        "count": len(result.items),
        "source": result.source,
    }


@router.post("/auto-suggest-medications")
async def auto_suggest_medications(payload: SuggestPayload, services: Services = Depends(get_services)):
    notes = _required_notes(payload)
    result = await suggest_medications(
        services.gateway,
        notes,
        payload.current_meds or "",
        timeout=services.settings.gateway_timeout_sec,
    )
    services.usage.log_event("medications_suggested", meta={"source": result.source, "count": len(result.items)})
    return {
        "success": True,
        "suggestedMedications": _dump_all(result.items),
        "source": result.source,
    }


@router.post("/auto-complete-billing")
async def auto_complete_billing(payload: SuggestPayload, services: Services = Depends(get_services)):
    notes = _required_notes(payload)
    timeout = services.settings.gateway_timeout_sec

    codes, meds = await asyncio.gather(
        suggest_codes(services.gateway, notes, timeout=timeout),
        suggest_medications(services.gateway, notes, payload.current_meds or "", timeout=timeout),
    )

    store = EncounterBilling(fees=services.settings.fees)
    store.replace_all(codes.items, meds.items)
    summary = store.summary()

    services.usage.log_event(
        "billing_autocompleted",
        meta={"codes_source": codes.source, "medications_source": meds.source},
    )
    return {
        "success": True,
        "suggestedCodes": _dump_all(store.codes),
        "suggestedMedications": _dump_all(store.line_items),
        "billingSummary": _dump(summary),
        "sources": {"codes": codes.source, "medications": meds.source},
        "message": "Billing information automatically generated by AI",
    }


# =========================
# Consult chat
# =========================

@router.post("/ai-consult")
async def ai_consult(payload: ConsultPayload, services: Services = Depends(get_services)):
    message = (payload.message or "").strip()
    if not message:
        raise ValidationError("Message is required")

    try:
        text = await call_with_timeout(
            services.gateway.consult,
            message,
            payload.patient_data or PatientData(),
            payload.icd10_codes,
            timeout=services.settings.gateway_timeout_sec,
        )
    except GatewayError as e:
        logger.warning("consult unavailable: %s", e)
        services.usage.log_event("consult", status=503)
        raise HTTPException(status_code=503, detail="AI consult is currently unavailable")

    services.usage.log_event("consult")
    return {"success": True, "response": text}


# =========================
# Prescription upload
# =========================

@router.post("/upload-prescription")
async def upload_prescription(
    prescription: Optional[UploadFile] = File(None),
    patient_id: Optional[str] = Form(None, alias="patientId"),
    clinical_notes: Optional[str] = Form(None, alias="clinicalNotes"),
    current_meds: Optional[str] = Form(None, alias="currentMeds"),
    services: Services = Depends(get_services),
):
    if prescription is None:
        raise ValidationError("No file uploaded or file type not supported")

    max_bytes = services.settings.max_upload_bytes
    # One byte past the cap is enough to know it's too big.
    data = await prescription.read(max_bytes + 1)
    original_name = prescription.filename or "upload"
    safe_name, mime = validate_upload(original_name, prescription.content_type or "", data, max_bytes)

    stored_name, path = services.upload_store.save_upload(safe_name, data)
    logger.info("upload.saved file=%s mime=%s bytes=%s", stored_name, mime, len(data))

    patient = PatientData(
        id=(patient_id or "").strip() or None,
        name="Unknown Patient",
        gender="Unknown",
        clinical_notes=(clinical_notes or "").strip() or "No clinical notes provided",
        current_meds=(current_meds or "").strip() or "No current medications",
    )
    known = services.patients.get(patient.id or "")
    if known is not None:
        patient = PatientData(
            id=known.id,
            name=known.name,
            gender=known.gender,
            clinical_notes=patient.clinical_notes if clinical_notes else known.clinical_notes,
            current_meds=patient.current_meds if current_meds else known.current_meds,
        )

    analysis = await analyze_upload(
        services.gateway,
        patient,
        path,
        mime,
        original_name,
        timeout=services.settings.gateway_timeout_sec,
    )

    record = PrescriptionRecord(
        id=new_artifact_id("rx"),
        patient_id=patient.id or "unknown",
        filename=stored_name,
        original_name=original_name,
        size=len(data),
        mime_type=mime,
        analysis=analysis.items[0],
    )
    services.prescriptions.add(record.id, record)
    services.usage.log_event("prescription_uploaded", meta={"mime": mime, "analysis_source": analysis.source})

    return {
        "success": True,
        "message": "File uploaded and analyzed successfully",
        "analysis": record.analysis,
        "fileInfo": {
            "filename": stored_name,
            "originalName": original_name,
            "size": len(data),
            "type": mime,
            "uploadPath": f"/uploads/{stored_name}",
        },
    }


# =========================
# Bill generation
# =========================

async def _render_artifact(services: Services, snapshot: EncounterSnapshot, bill_id: str, encounter_id: Optional[str]) -> Artifact:
    renderer = services.renderer
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(renderer.render, snapshot, bill_id, encounter_id),
            timeout=services.settings.render_timeout_sec,
        )
    except asyncio.TimeoutError:
        logger.warning("bill.render timed out bill_id=%s, using text fallback", bill_id)
        return await asyncio.to_thread(renderer.render_fallback, snapshot, bill_id, encounter_id)


@router.post("/generate-bill")
async def generate_bill(payload: GenerateBillPayload, services: Services = Depends(get_services)):
    try:
        if payload.patient_data is None:
            raise ValidationError("Patient data is required")
        if not payload.medications:
            raise ValidationError("At least one medication is required")

        store = EncounterBilling(patient=payload.patient_data, fees=services.settings.fees)
        for med in payload.medications:
            store.add_line_item(med.name, med.cost, purpose=med.purpose, frequency=med.frequency)
        for token in payload.icd10_codes:
            store.add_code(token)

        summary = ensure_billable(store.summary())
        check_client_total(payload.total_amount, summary)

        snapshot = store.snapshot(ai_notes=payload.ai_suggestions or "")
        bill_id = new_artifact_id("bill")
        encounter_id = (payload.patient_data.id or "").strip() or None

        artifact = await _render_artifact(services, snapshot, bill_id, encounter_id)
        services.bill_store.write_once(artifact.filename, artifact.content)
    except MedbillError as e:
        services.usage.log_event("bill_generated", status=e.status_code)
        raise

    record = BillRecord(
        id=bill_id,
        patient_id=encounter_id,
        filename=artifact.filename,
        total_amount=summary.grand_total,
        format=artifact.extension,
        degraded=artifact.degraded,
        generated_at=artifact.generated_at,
    )
    services.bills.add(record.id, record)
    services.patients.mark_billing_started(encounter_id)

    logger.info(
        "bill.generated bill_id=%s format=%s degraded=%s total=%s",
        bill_id,
        record.format,
        record.degraded,
        summary.grand_total,
    )
    services.usage.log_event("bill_generated", meta={"format": record.format, "degraded": record.degraded})

    message = "Bill generated successfully"
    if artifact.degraded:
        message = "Bill generated as plain text (PDF rendering unavailable)"
    return {
        "success": True,
        "message": message,
        "downloadUrl": f"/bills/{artifact.filename}",
        "billId": bill_id,
        "totalAmount": float(summary.grand_total),
        "billingSummary": _dump(summary),
        "format": record.format,
        "degraded": record.degraded,
    }


@router.get("/bills")
def list_bills(services: Services = Depends(get_services)):
    bills = services.bills.list()
    return {"success": True, "bills": _dump_all(bills), "count": len(bills)}


# =========================
# Diagnostics
# =========================

@router.get("/status")
def status(services: Services = Depends(get_services)):
    return {
        "success": True,
        "apiKey": "present" if services.gateway.configured else "missing",
        "model": services.gateway.model,
        "directories": {
            "uploads": {"path": services.upload_store.base_dir, "writable": services.upload_store.is_writable()},
            "bills": {"path": services.bill_store.base_dir, "writable": services.bill_store.is_writable()},
        },
        "counts": {
            "patients": services.patients.count(),
            "prescriptions": services.prescriptions.count(),
            "bills": services.bills.count(),
        },
        "usageToday": services.usage.summarize_day(),
    }


# =========================
# Stored files
# =========================

@files_router.get("/uploads/{filename}")
def get_upload(filename: str, services: Services = Depends(get_services)):
    path = services.upload_store.resolve(filename)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path)


@files_router.get("/bills/{filename}")
def get_bill_file(filename: str, services: Services = Depends(get_services)):
    path = services.bill_store.resolve(filename)
    if path is None:
        raise HTTPException(status_code=404, detail="Bill not found")
    return FileResponse(path)
