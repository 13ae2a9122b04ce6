import dataclasses
import time
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from main import create_app
from medbill.config import Settings
from medbill.document import BillRenderer, render_pdf
from medbill.gateway import SuggestionGateway
from medbill.icd10 import reset_keyword_cache

CODES_REPLY = '{"codes": [{"code": "J06.9", "label": "Acute upper respiratory infection"}, {"code": "R50.9", "label": "Fever"}]}'
MEDS_REPLY = '{"medications": [{"name": "Acetaminophen 500mg", "cost": 15, "purpose": "Fever"}]}'


class StageCompletions:
    """Answers by prompt type, so concurrent calls don't depend on ordering."""

    def __init__(self):
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        system = kwargs["messages"][0]["content"]
        if "coding expert" in system:
            content = CODES_REPLY
        elif "pharmacist" in system:
            content = MEDS_REPLY
        else:
            content = "Consider a follow-up in one week."
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(tmp_path, gateway=None, renderer=None, **overrides):
    settings = dataclasses.replace(Settings().with_dirs(str(tmp_path)), **overrides)
    app = create_app(settings=settings, gateway=gateway or SuggestionGateway(api_key=None), renderer=renderer)
    return TestClient(app), app.state.services


def _model_gateway():
    completions = StageCompletions()
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return SuggestionGateway(client=client, model="test-model")


@pytest.fixture(autouse=True)
def _default_rules(monkeypatch):
    monkeypatch.delenv("MEDBILL_ICD10_KEYWORDS_PATH", raising=False)
    reset_keyword_cache()


def _bill_payload(**overrides):
    payload = {
        "patientData": {"name": "Jane Roe", "gender": "Female", "clinicalNotes": "Cough and fever"},
        "medications": [{"name": "Acetaminophen 500mg", "cost": "15.00", "frequency": "q6h"}],
        "icd10Codes": ["J06.9 - Acute upper respiratory infection"],
        "aiSuggestions": "Rest and fluids.",
        "totalAmount": 105,
    }
    payload.update(overrides)
    return payload


def test_ping(tmp_path):
    client, _ = _client(tmp_path)
    assert client.get("/ping").json() == {"status": "ok"}


def test_patient_lifecycle(tmp_path):
    client, _ = _client(tmp_path)
    res = client.post("/api/patients", json={"name": "Ann", "gender": "F", "clinicalNotes": "Headache"})
    assert res.status_code == 200
    patient = res.json()["patient"]
    assert patient["id"].startswith("patient_")
    assert patient["billingStarted"] is False

    assert client.get(f"/api/patients/{patient['id']}").json()["patient"]["name"] == "Ann"
    assert client.get("/api/patients").json()["count"] == 1

    res = client.put(f"/api/patients/{patient['id']}/notes", json={"clinicalNotes": "Headache, resolved"})
    assert res.json()["patient"]["clinicalNotes"] == "Headache, resolved"


def test_patient_validation_and_not_found(tmp_path):
    client, _ = _client(tmp_path)
    res = client.post("/api/patients", json={"name": "Ann"})
    assert res.status_code == 400
    assert res.json()["success"] is False
    assert "required" in res.json()["error"]

    res = client.get("/api/patients/patient_missing")
    assert res.status_code == 404
    assert res.json() == {"success": False, "error": "Patient not found"}


def test_suggest_codes_requires_notes(tmp_path):
    client, _ = _client(tmp_path)
    res = client.post("/api/auto-suggest-codes", json={"clinicalNotes": "  abc  "})
    assert res.status_code == 400
    assert "at least 5 characters" in res.json()["error"]


def test_suggest_codes_fallback_without_key(tmp_path):
    client, _ = _client(tmp_path)
    res = client.post("/api/auto-suggest-codes", json={"clinicalNotes": "Patient has fever"})
    body = res.json()
    assert res.status_code == 200
    assert body["source"] == "fallback"
    assert [c["code"] for c in body["suggestedCodes"]] == ["R50.9"]


def test_suggest_medications_from_model(tmp_path):
    client, _ = _client(tmp_path, gateway=_model_gateway())
    res = client.post("/api/auto-suggest-medications", json={"clinicalNotes": "fever", "currentMeds": ""})
    body = res.json()
    assert body["source"] == "model"
    assert body["suggestedMedications"][0]["cost"] == 15.0


def test_auto_complete_billing(tmp_path):
    client, _ = _client(tmp_path, gateway=_model_gateway())
    res = client.post("/api/auto-complete-billing", json={"clinicalNotes": "Cough and fever"})
    body = res.json()
    assert res.status_code == 200
    assert body["sources"] == {"codes": "model", "medications": "model"}
    assert [c["code"] for c in body["suggestedCodes"]] == ["J06.9", "R50.9"]
    # 15 + 75 consultation + 2 * 15 coding
    assert body["billingSummary"]["grandTotal"] == 120.0


def test_generate_bill_pdf_and_download(tmp_path):
    client, services = _client(tmp_path)
    patient = client.post(
        "/api/patients", json={"name": "Jane Roe", "gender": "Female", "clinicalNotes": "Cough and fever"}
    ).json()["patient"]

    payload = _bill_payload()
    payload["patientData"]["id"] = patient["id"]
    res = client.post("/api/generate-bill", json=payload)
    body = res.json()
    assert res.status_code == 200, body
    assert body["format"] == "pdf"
    assert body["degraded"] is False
    assert body["totalAmount"] == 105.0
    assert body["downloadUrl"] == f"/bills/{body['billId']}.pdf"

    download = client.get(body["downloadUrl"])
    assert download.status_code == 200
    assert download.content.startswith(b"%PDF")

    assert services.patients.get(patient["id"]).billing_started is True
    bills = client.get("/api/bills").json()
    assert bills["count"] == 1
    assert bills["bills"][0]["totalAmount"] == 105.0


def test_generate_bill_ignores_client_total(tmp_path):
    client, _ = _client(tmp_path)
    res = client.post("/api/generate-bill", json=_bill_payload(totalAmount=1))
    assert res.json()["totalAmount"] == 105.0


def test_generate_bill_text_fallback(tmp_path):
    client, _ = _client(tmp_path)
    payload = _bill_payload(patientData={"name": "王小明", "gender": "M", "clinicalNotes": "fever"})
    body = client.post("/api/generate-bill", json=payload).json()
    assert body["format"] == "txt"
    assert body["degraded"] is True
    text = client.get(body["downloadUrl"]).content.decode("utf-8")
    assert "王小明" in text
    assert "TOTAL AMOUNT: $105.00" in text


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"patientData": None}, "Patient data is required"),
        ({"medications": []}, "At least one medication is required"),
        ({"medications": [{"name": "Zinc", "cost": "abc"}]}, "Medications missing costs: Zinc"),
        ({"icd10Codes": ["J6"]}, "Invalid ICD-10 code format: J6"),
        ({"medications": [{"name": "X", "cost": 1e30}]}, "Medications missing costs: X"),
    ],
)
def test_generate_bill_rejects_bad_input(tmp_path, overrides, message):
    client, services = _client(tmp_path)
    res = client.post("/api/generate-bill", json=_bill_payload(**overrides))
    assert res.status_code == 400
    assert res.json()["error"] == message
    assert services.bills.count() == 0


def test_upload_text_prescription(tmp_path):
    client, services = _client(tmp_path, gateway=_model_gateway())
    res = client.post(
        "/api/upload-prescription",
        files={"prescription": ("rx note.txt", b"Amoxicillin 500mg TID", "text/plain")},
        data={"patientId": "patient_x", "clinicalNotes": "sore throat"},
    )
    body = res.json()
    assert res.status_code == 200, body
    assert body["analysis"] == "Consider a follow-up in one week."
    info = body["fileInfo"]
    assert info["originalName"] == "rx note.txt"
    assert info["filename"].endswith("rx_note.txt")
    assert info["type"] == "text/plain"
    assert client.get(info["uploadPath"]).content == b"Amoxicillin 500mg TID"
    assert services.prescriptions.count() == 1


def test_upload_without_model_still_succeeds(tmp_path):
    client, _ = _client(tmp_path)
    res = client.post(
        "/api/upload-prescription",
        files={"prescription": ("rx.txt", b"notes", "text/plain")},
    )
    assert res.status_code == 200
    assert "unavailable" in res.json()["analysis"]


def test_upload_rejects_bad_type_and_size(tmp_path):
    client, _ = _client(tmp_path, max_upload_bytes=8)
    res = client.post("/api/upload-prescription", files={"prescription": ("x.exe", b"MZ", "application/x-msdownload")})
    assert res.status_code == 400
    assert res.json()["error"].startswith("Invalid file type")

    res = client.post("/api/upload-prescription", files={"prescription": ("big.txt", b"x" * 64, "text/plain")})
    assert res.status_code == 413

    res = client.post("/api/upload-prescription", files={"prescription": ("fake.pdf", b"hello", "application/pdf")})
    assert res.status_code == 400


def test_ai_consult(tmp_path):
    client, _ = _client(tmp_path)
    assert client.post("/api/ai-consult", json={"message": " "}).status_code == 400

    res = client.post("/api/ai-consult", json={"message": "Dosing?"})
    assert res.status_code == 503
    assert res.json()["success"] is False

    client, _ = _client(tmp_path, gateway=_model_gateway())
    res = client.post("/api/ai-consult", json={"message": "Dosing?", "icd10Codes": ["I10"]})
    assert res.json() == {"success": True, "response": "Consider a follow-up in one week."}


def test_file_routes_refuse_unknown_and_traversal(tmp_path):
    client, _ = _client(tmp_path)
    res = client.get("/bills/missing.pdf")
    assert res.status_code == 404
    assert res.json() == {"success": False, "error": "Bill not found"}
    assert client.get("/uploads/..%2Fsecret.txt").status_code == 404


def test_status(tmp_path):
    client, _ = _client(tmp_path)
    body = client.get("/api/status").json()
    assert body["apiKey"] == "missing"
    assert body["directories"]["bills"]["writable"] is True
    assert body["counts"] == {"patients": 0, "prescriptions": 0, "bills": 0}


def test_generate_bill_with_total_label_in_suggestions(tmp_path):
    client, _ = _client(tmp_path)
    res = client.post(
        "/api/generate-bill",
        json=_bill_payload(aiSuggestions="Prior visit TOTAL AMOUNT: $50.00 was paid."),
    )
    body = res.json()
    assert res.status_code == 200, body
    assert body["format"] == "pdf"
    assert body["totalAmount"] == 105.0


def test_generate_bill_render_timeout_uses_text(tmp_path):
    def slow_pdf(sections):
        time.sleep(0.5)
        return render_pdf(sections)

    client, services = _client(tmp_path, renderer=BillRenderer(primary=slow_pdf), render_timeout_sec=0.01)
    res = client.post("/api/generate-bill", json=_bill_payload())
    body = res.json()
    assert res.status_code == 200, body
    assert body["degraded"] is True
    assert body["format"] == "txt"
    assert body["downloadUrl"].endswith(".txt")

    text = client.get(body["downloadUrl"]).content.decode("utf-8")
    assert "TOTAL AMOUNT: $105.00" in text
    assert services.bills.list()[0].degraded is True
