import base64
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from server.api import app, get_analyzer, DEMO_USER, DEMO_PASS, UNAVAILABLE_MESSAGE
from app.state import AnalysisResult, ExtractedDiagnosis

client = TestClient(app)
AUTH = (DEMO_USER, DEMO_PASS)
ANALYZE_URL = "/api/ai/analyze-medical-records"


class FakeAnalyzer:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def analyze(self, file_data, mime_type, file_name, pre_extracted_text=None, file_buffer=None):
        self.calls.append(
            {
                "file_data": file_data,
                "mime_type": mime_type,
                "file_name": file_name,
                "pre_extracted_text": pre_extracted_text,
                "file_buffer": file_buffer,
            }
        )
        if self.error:
            raise self.error
        return AnalysisResult(
            diagnoses=[ExtractedDiagnosis(condition_name="Tinnitus", diagnostic_code="6260", category="HEARING")],
            raw_analysis='[{"conditionName": "Tinnitus"}]',
        )


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setenv("TEMP_UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def analyzer():
    fake = FakeAnalyzer()
    app.dependency_overrides[get_analyzer] = lambda: fake
    yield fake
    app.dependency_overrides.clear()


# ---------- Authentication ----------
def test_health_no_auth():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_login_success():
    r = client.post("/login", auth=AUTH)
    assert r.status_code == 200


def test_login_failure():
    r = client.post("/login", auth=("bad", "creds"))
    assert r.status_code == 401
    assert "Invalid credentials" in r.json()["detail"]


def test_analyze_requires_auth(analyzer):
    r = client.post(ANALYZE_URL, json={"fileData": "abc"})
    assert r.status_code == 401
    assert analyzer.calls == []


# ---------- Upload ----------
def test_upload_writes_temp_file(upload_dir):
    r = client.put("/api/storage/upload/claims/123/records.pdf", content=b"%PDF-1.4 data", auth=AUTH)
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["objectPath"] == "/objects/claims/123/records.pdf"

    saved = Path(data["serverFilePath"])
    assert saved.parent == upload_dir.resolve()
    assert saved.name.endswith("-claims_123_records.pdf")
    assert saved.read_bytes() == b"%PDF-1.4 data"


def test_upload_empty_body(upload_dir):
    r = client.put("/api/storage/upload/empty.pdf", content=b"", auth=AUTH)
    assert r.status_code == 400


# ---------- Analyze ----------
def test_analyze_server_file_path(upload_dir, analyzer):
    upload = client.put("/api/storage/upload/scan.pdf", content=b"%PDF-1.4 scan", auth=AUTH).json()

    r = client.post(
        ANALYZE_URL,
        json={"serverFilePath": upload["serverFilePath"], "fileType": "application/pdf", "fileName": "scan.pdf"},
        auth=AUTH,
    )

    assert r.status_code == 200
    body = r.json()
    assert body["diagnoses"][0]["conditionName"] == "Tinnitus"
    assert body["diagnoses"][0]["diagnosticCode"] == "6260"
    assert "rawAnalysis" in body

    call = analyzer.calls[0]
    assert call["file_buffer"] == b"%PDF-1.4 scan"
    assert call["mime_type"] == "application/pdf"
    assert not Path(upload["serverFilePath"]).exists()


def test_analyze_rejects_path_outside_upload_dir(upload_dir, analyzer, tmp_path):
    outside = tmp_path / "secret.txt"
    outside.write_text("do not read")

    r = client.post(ANALYZE_URL, json={"serverFilePath": str(outside)}, auth=AUTH)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid file path"
    assert outside.exists()
    assert analyzer.calls == []


def test_analyze_rejects_traversal(upload_dir, analyzer):
    upload_dir.mkdir(parents=True, exist_ok=True)
    r = client.post(ANALYZE_URL, json={"serverFilePath": str(upload_dir / ".." / "x.pdf")}, auth=AUTH)
    assert r.status_code == 400


def test_analyze_missing_upload(upload_dir, analyzer):
    upload_dir.mkdir(parents=True, exist_ok=True)
    r = client.post(ANALYZE_URL, json={"serverFilePath": str(upload_dir / "gone.pdf")}, auth=AUTH)
    assert r.status_code == 404
    assert "re-upload" in r.json()["detail"]


def test_analyze_without_data(analyzer):
    r = client.post(ANALYZE_URL, json={"fileName": "a.pdf"}, auth=AUTH)
    assert r.status_code == 400


def test_analyze_base64_payload(analyzer):
    payload = base64.b64encode(b"Diagnosis: tinnitus").decode()
    r = client.post(
        ANALYZE_URL,
        json={"fileData": payload, "fileType": "text/plain", "fileName": "note.txt", "extractedText": "ocr text"},
        auth=AUTH,
    )
    assert r.status_code == 200
    call = analyzer.calls[0]
    assert call["file_data"] == payload
    assert call["file_name"] == "note.txt"
    assert call["pre_extracted_text"] == "ocr text"


def test_analyze_defaults_name_and_type(analyzer):
    r = client.post(ANALYZE_URL, json={"extractedText": "Assessment: PTSD"}, auth=AUTH)
    assert r.status_code == 200
    assert analyzer.calls[0]["file_name"] == "document"
    assert analyzer.calls[0]["mime_type"] == "application/octet-stream"


# ---------- Errors ----------
def test_auth_errors_are_sanitized():
    app.dependency_overrides[get_analyzer] = lambda: FakeAnalyzer(RuntimeError("401 invalid api key sk-secret"))
    try:
        r = client.post(ANALYZE_URL, json={"fileData": "abc"}, auth=AUTH)
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 503
    assert r.json()["detail"] == UNAVAILABLE_MESSAGE
    assert "sk-secret" not in r.text


def test_other_errors_return_500():
    app.dependency_overrides[get_analyzer] = lambda: FakeAnalyzer(RuntimeError("All AI models failed (m1). Last error: 503"))
    try:
        r = client.post(ANALYZE_URL, json={"fileData": "abc"}, auth=AUTH)
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 500
    assert r.json()["detail"].startswith("All AI models failed")


def test_staged_upload_is_read_off_the_event_loop(upload_dir, analyzer, monkeypatch):
    import asyncio

    original = asyncio.to_thread
    offloaded = []

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(func)
        return await original(func, *args, **kwargs)

    upload = client.put("/api/storage/upload/big.pdf", content=b"%PDF-1.4 big", auth=AUTH).json()
    monkeypatch.setattr("server.api.asyncio.to_thread", recording_to_thread)

    r = client.post(ANALYZE_URL, json={"serverFilePath": upload["serverFilePath"]}, auth=AUTH)

    assert r.status_code == 200
    assert any(getattr(f, "__name__", "") == "read_bytes" for f in offloaded)
    assert analyzer.calls[0]["file_buffer"] == b"%PDF-1.4 big"
