import json
import pytest

from app.state import AnalysisResult, ExtractedDiagnosis
from ingestion.file_loader import UploadedDocument


class DummyFileLoader:
    def __init__(self, input_dir: str):
        self.input_dir = input_dir
    def load_files(self):
        # Return two documents to exercise concurrency
        return {
            "note1.txt": UploadedDocument("note1.txt", "text/plain", b"dummy text 1"),
            "scan2.pdf": UploadedDocument("scan2.pdf", "application/pdf", b"%PDF-1.4"),
        }


class FakeAnalyzer:
    def __init__(self, returns):
        self._returns = returns
        self.calls = []
    async def analyze(self, file_data, mime_type, file_name, pre_extracted_text=None, file_buffer=None):
        self.calls.append((file_name, mime_type, file_data))
        outcome = self._returns[file_name]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _setup_monkeypatch(monkeypatch, analyzer):
    import cli
    monkeypatch.setattr(cli, "FileLoader", DummyFileLoader)
    monkeypatch.setattr(cli, "build_analyzer", lambda *a, **k: analyzer)
    return cli


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    # Avoid creating real Vertex client in tests
    monkeypatch.setenv("GCP_PROJECT", "")
    monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "")
    monkeypatch.delenv("WORKERS", raising=False)
    yield


def test_writes_one_json_per_document(tmp_path, monkeypatch):
    analyzer = FakeAnalyzer(
        {
            "note1.txt": AnalysisResult(
                diagnoses=[ExtractedDiagnosis(condition_name="Hypertension", diagnostic_code="7101")],
                raw_analysis="[...]",
            ),
            "scan2.pdf": AnalysisResult(diagnoses=[], raw_analysis="[]"),
        }
    )
    cli = _setup_monkeypatch(monkeypatch, analyzer)

    out_dir = tmp_path / "out"
    monkeypatch.setenv("INPUT_DIR", str(tmp_path))
    monkeypatch.setenv("OUTPUT_DIR", str(out_dir))
    monkeypatch.setenv("WORKERS", "2")

    cli.main()

    data1 = json.loads((out_dir / "note1.txt.json").read_text())
    data2 = json.loads((out_dir / "scan2.pdf.json").read_text())

    assert data1["diagnoses"][0]["conditionName"] == "Hypertension"
    assert data1["diagnoses"][0]["diagnosticCode"] == "7101"
    assert data1["rawAnalysis"] == "[...]"
    assert data2 == {"diagnoses": [], "rawAnalysis": "[]"}
    assert sorted(call[:2] for call in analyzer.calls) == [
        ("note1.txt", "text/plain"),
        ("scan2.pdf", "application/pdf"),
    ]


def test_error_in_one_file_does_not_abort_others(tmp_path, monkeypatch, capsys):
    analyzer = FakeAnalyzer(
        {
            "note1.txt": RuntimeError("boom"),
            "scan2.pdf": AnalysisResult(diagnoses=[ExtractedDiagnosis(condition_name="OK")]),
        }
    )
    cli = _setup_monkeypatch(monkeypatch, analyzer)

    out_dir = tmp_path / "out"
    monkeypatch.setenv("INPUT_DIR", str(tmp_path))
    monkeypatch.setenv("OUTPUT_DIR", str(out_dir))

    cli.main()
    captured = capsys.readouterr()
    assert "Error: note1.txt: boom" in captured.out

    files = {p.name for p in out_dir.iterdir()}
    assert files == {"scan2.pdf.json"}


def test_missing_input_dir_raises(tmp_path, monkeypatch, capsys):
    import cli
    monkeypatch.setenv("INPUT_DIR", str(tmp_path / "nope"))
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "out"))

    with pytest.raises(FileNotFoundError):
        cli.main()
    assert "Error:" in capsys.readouterr().out
