import fitz
import pandas as pd
import pytest

from config.settings import Settings


class FakeChatClient:
    """Stands in for VertexChatClient.

    Either replays ``responses`` in order (exceptions are raised) or delegates
    to ``handler(model, messages, extra_options)``.
    """

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls = []

    async def complete(self, model, messages, max_output_tokens, temperature, extra_options=None):
        self.calls.append({"model": model, "messages": messages, "extra_options": extra_options})
        if self.handler:
            return self.handler(model, messages, extra_options)
        if not self.responses:
            raise AssertionError("No more responses configured")
        effect = self.responses.pop(0)
        if isinstance(effect, Exception):
            raise effect
        return effect


@pytest.fixture
def fake_client():
    return FakeChatClient


@pytest.fixture
def make_pdf():
    def _make(pages: int, lines_per_page: int = 0, marker: bool = False) -> bytes:
        doc = fitz.open()
        for i in range(pages):
            page = doc.new_page()
            lines = []
            if marker:
                lines.append(f"P{i + 1}")
            lines.extend(
                f"Page {i + 1} line {n}: chronic lumbosacral strain, follow up PT" for n in range(lines_per_page)
            )
            if lines:
                page.insert_text((72, 72), "\n".join(lines), fontsize=9)
        data = doc.tobytes()
        doc.close()
        return data

    return _make


@pytest.fixture
def codes_csv(tmp_path):
    csv = tmp_path / "codes.csv"
    pd.DataFrame(
        [
            {"Diagnostic Code": "9411", "Condition": "PTSD", "CFR Reference": "38 CFR § 4.130", "Category": "MENTAL_HEALTH"},
            {"Diagnostic Code": "6260", "Condition": "Tinnitus", "CFR Reference": "38 CFR § 4.87", "Category": "HEARING"},
            {"Diagnostic Code": "5235-5243", "Condition": "Spine conditions", "CFR Reference": "38 CFR § 4.71a", "Category": "MUSCULOSKELETAL"},
        ]
    ).to_csv(csv, index=False)
    return str(csv)


@pytest.fixture
def settings(codes_csv, tmp_path):
    return Settings(
        gcp_project="test-project",
        gcp_credentials_path="",
        extraction_model="model-a",
        model_profile="smart",
        retry_base_delay=0.0,
        diagnostic_codes_csv=codes_csv,
        input_dir=str(tmp_path),
        output_dir=str(tmp_path / "out"),
        temp_upload_dir=str(tmp_path / "uploads"),
    )
