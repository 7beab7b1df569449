from __future__ import annotations

import asyncio
import os
import re
import time
from functools import lru_cache
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from config.settings import get_settings
from app.graph import build_analyzer, MedicalRecordsAnalyzer

# ---------- Security ----------
security = HTTPBasic()

DEMO_USER = os.getenv("DEMO_USERNAME", "claims_reviewer")
DEMO_PASS = os.getenv("DEMO_PASSWORD", "RecordsDemo2024!")

# Failures whose message may leak key or token details to the browser
_AUTH_ERROR_RE = re.compile(
    r"invalid token|invalid_token|unauthorized|unauthenticated|api key|api_key|"
    r"authentication|credentials|jwt|bearer|not configured|service key",
    re.IGNORECASE,
)

UNAVAILABLE_MESSAGE = (
    "Analysis service is temporarily unavailable. "
    "Please add conditions manually in the Conditions step."
)


def authenticate(credentials: HTTPBasicCredentials = Depends(security)):
    if credentials.username != DEMO_USER or credentials.password != DEMO_PASS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


# ---------- App ----------
app = FastAPI(title="Medical Records Analyzer API", version="1.0.0")


@lru_cache(maxsize=1)
def get_analyzer() -> MedicalRecordsAnalyzer:
    return build_analyzer(get_settings())


def temp_upload_dir() -> Path:
    path = Path(get_settings().temp_upload_dir).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_data: Optional[str] = None
    file_type: Optional[str] = None
    file_name: Optional[str] = None
    extracted_text: Optional[str] = None
    server_file_path: Optional[str] = None


# ---------- API ----------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/login")
def login(_: str = Depends(authenticate)):
    return {"status": "ok"}


@app.put("/api/storage/upload/{storage_path:path}")
async def upload_file(storage_path: str, request: Request, _: str = Depends(authenticate)):
    """Stage an upload on local disk so analysis can read it without a base64 round-trip."""
    body = await request.body()
    if not body:
        raise HTTPException(status_code=400, detail="No file data received")

    temp_name = f"{int(time.time() * 1000)}-{storage_path.replace('/', '_')}"
    server_file_path = temp_upload_dir() / temp_name
    server_file_path.write_bytes(body)
    logger.info(f"Saved {len(body) / (1024 * 1024):.1f}MB upload to {temp_name}")

    return {
        "success": True,
        "objectPath": f"/objects/{storage_path}",
        "serverFilePath": str(server_file_path),
    }


@app.post("/api/ai/analyze-medical-records")
async def analyze_medical_records(
    payload: AnalyzeRequest,
    _: str = Depends(authenticate),
    analyzer: MedicalRecordsAnalyzer = Depends(get_analyzer),
):
    file_type = payload.file_type or "application/octet-stream"
    file_name = payload.file_name or "document"

    try:
        if payload.server_file_path and payload.server_file_path.strip():
            resolved = Path(payload.server_file_path).resolve()
            if not resolved.is_relative_to(temp_upload_dir()):
                logger.error(f"Path outside temp dir: {resolved}")
                raise HTTPException(status_code=400, detail="Invalid file path")
            if not resolved.exists():
                raise HTTPException(
                    status_code=404,
                    detail="Uploaded file not found on server. Please re-upload the document.",
                )

            data = await asyncio.to_thread(resolved.read_bytes)
            result = await analyzer.analyze("", file_type, file_name, payload.extracted_text, data)
            resolved.unlink(missing_ok=True)
            return result.to_json()

        if not payload.file_data and not payload.extracted_text:
            raise HTTPException(
                status_code=400,
                detail="No file data received. Please re-upload the document.",
            )

        result = await analyzer.analyze(
            payload.file_data or "", file_type, file_name, payload.extracted_text
        )
        return result.to_json()

    except HTTPException:
        raise
    except Exception as e:
        raw_message = str(e)
        if _AUTH_ERROR_RE.search(raw_message):
            logger.error("Analysis error: (token/auth details withheld)")
            raise HTTPException(status_code=503, detail=UNAVAILABLE_MESSAGE) from e
        logger.error(f"Analysis error: {raw_message}")
        raise HTTPException(
            status_code=500,
            detail=raw_message or "Failed to analyze medical records. Please try again.",
        ) from e
