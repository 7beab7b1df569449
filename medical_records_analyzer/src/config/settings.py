from pathlib import Path
from typing import Dict, List

from pydantic import BaseModel
from dotenv import load_dotenv
import os

load_dotenv()

_REPO_ROOT = Path(__file__).resolve().parents[2]

# Ordered fallback lists. The requested model is always tried first, then these
# in order with duplicates removed.
MODEL_PRIORITY: Dict[str, List[str]] = {
    "fast": [
        "gemini-2.5-flash-lite",
        "gemini-2.0-flash",
        "gemini-2.5-flash",
    ],
    "smart": [
        "gemini-2.5-flash",
        "gemini-2.5-pro",
        "gemini-2.0-flash",
    ],
}


class Settings(BaseModel):
    gcp_project: str
    gcp_location: str = "us-central1"
    gcp_credentials_path: str
    extraction_model: str = "gemini-2.5-flash"
    model_profile: str = "smart"
    max_output_tokens: int = 8192
    temperature: float = 0.1
    retry_base_delay: float = 1.0
    pdf_chunk_pages: int = 10
    one_shot_max_bytes: int = 12 * 1024 * 1024
    max_text_chars: int = 400_000
    input_dir: str = "data/input"
    output_dir: str = "data/output"
    temp_upload_dir: str = "temp-uploads"
    diagnostic_codes_csv: str = str(_REPO_ROOT / "data" / "diagnostic_codes.csv")

    def fallback_models(self) -> List[str]:
        return MODEL_PRIORITY.get(self.model_profile, MODEL_PRIORITY["smart"])


def get_settings() -> Settings:
    return Settings(
        gcp_project=os.getenv("GCP_PROJECT", ""),
        gcp_location=os.getenv("GCP_LOCATION", "us-central1"),
        gcp_credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS", ""),
        extraction_model=os.getenv("EXTRACTION_MODEL", "gemini-2.5-flash"),
        model_profile=os.getenv("MODEL_PROFILE", "smart"),
        max_output_tokens=int(os.getenv("MAX_OUTPUT_TOKENS", "8192")),
        temperature=float(os.getenv("TEMPERATURE", "0.1")),
        retry_base_delay=float(os.getenv("RETRY_BASE_DELAY", "1.0")),
        pdf_chunk_pages=int(os.getenv("PDF_CHUNK_PAGES", "10")),
        one_shot_max_bytes=int(os.getenv("ONE_SHOT_MAX_BYTES", str(12 * 1024 * 1024))),
        max_text_chars=int(os.getenv("MAX_TEXT_CHARS", "400000")),
        input_dir=os.getenv("INPUT_DIR", "data/input"),
        output_dir=os.getenv("OUTPUT_DIR", "data/output"),
        temp_upload_dir=os.getenv("TEMP_UPLOAD_DIR", "temp-uploads"),
        diagnostic_codes_csv=os.getenv(
            "DIAGNOSTIC_CODES_CSV", str(_REPO_ROOT / "data" / "diagnostic_codes.csv")
        ),
    )
