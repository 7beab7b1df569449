from loguru import logger
import base64
import os
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import vertexai
from vertexai.generative_models import Content, GenerationConfig, GenerativeModel, Part

from ingestion.text_cleaner import split_data_url


def _data_url_part(url: str, fallback_mime: str) -> Part:
    mime_type, payload = split_data_url(url)
    return Part.from_data(data=base64.b64decode(payload), mime_type=mime_type or fallback_mime)


def to_vertex_contents(
    messages: List[Dict[str, Any]], allow_documents: bool = False
) -> Tuple[Optional[str], List[Content]]:
    """Translate OpenAI-style chat messages into a Vertex system instruction and contents.

    Supported content parts: ``text``, ``image_url`` (data URL) and ``file``
    (``{"filename", "file_data"}`` data URL). File parts are only accepted when
    document parsing was requested.
    """
    system_parts: List[str] = []
    contents: List[Content] = []

    for message in messages:
        role = message.get("role", "user")
        content = message.get("content", "")

        if role == "system":
            system_parts.append(content if isinstance(content, str) else "")
            continue

        parts: List[Part] = []
        if isinstance(content, str):
            parts.append(Part.from_text(content))
        else:
            for item in content:
                kind = item.get("type")
                if kind == "text":
                    parts.append(Part.from_text(item["text"]))
                elif kind == "image_url":
                    parts.append(_data_url_part(item["image_url"]["url"], "image/jpeg"))
                elif kind == "file":
                    if not allow_documents:
                        raise ValueError(
                            "File attachments require document_ocr=True in extra_options"
                        )
                    parts.append(_data_url_part(item["file"]["file_data"], "application/pdf"))
                else:
                    raise ValueError(f"Unsupported message content type: {kind}")

        contents.append(Content(role="model" if role == "assistant" else "user", parts=parts))

    system_instruction = "\n\n".join(p for p in system_parts if p) or None
    return system_instruction, contents


class VertexChatClient:
    """Chat-completion collaborator backed by Vertex AI Gemini models."""

    def __init__(self, project: str, location: str):
        logger.info("Initializing Vertex AI client")

        # Validate credentials before initializing
        self._validate_credentials()

        try:
            vertexai.init(project=project, location=location)
        except Exception as e:
            error_msg = str(e)
            if "EndOfStreamError" in error_msg or "pyasn1" in error_msg:
                raise ValueError(
                    "Invalid or corrupted Google Cloud credentials file. "
                    "Please check that GOOGLE_APPLICATION_CREDENTIALS points to a valid service account JSON file."
                ) from e
            raise

    def _validate_credentials(self):
        """Validate that credentials file exists and is readable."""
        creds_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")

        if not creds_path:
            raise ValueError(
                "GOOGLE_APPLICATION_CREDENTIALS environment variable is not set. "
                "Please set it to the path of your Google Cloud service account JSON file."
            )

        creds_file = Path(creds_path)
        if not creds_file.exists():
            raise FileNotFoundError(
                f"Credentials file not found: {creds_path}. "
                "Please check that GOOGLE_APPLICATION_CREDENTIALS points to an existing file."
            )

        try:
            with open(creds_file, 'r') as f:
                creds_data = json.load(f)
                if "private_key" not in creds_data or "client_email" not in creds_data:
                    raise ValueError(
                        f"Invalid credentials file format: {creds_path}. "
                        "The file must be a valid service account JSON with 'private_key' and 'client_email' fields."
                    )
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Credentials file is not valid JSON: {creds_path}. "
                f"Error: {e}"
            ) from e

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        max_output_tokens: int,
        temperature: float,
        extra_options: Optional[Dict[str, Any]] = None,
    ) -> str:
        options = extra_options or {}
        system_instruction, contents = to_vertex_contents(
            messages, allow_documents=bool(options.get("document_ocr"))
        )

        generative_model = GenerativeModel(model, system_instruction=system_instruction)
        config = GenerationConfig(
            max_output_tokens=max_output_tokens,
            temperature=temperature,
            response_mime_type="application/json",
        )

        try:
            response = await generative_model.generate_content_async(
                contents, generation_config=config
            )
        except Exception as e:
            error_msg = str(e)
            error_type = type(e).__name__
            if "EndOfStreamError" in error_type or "pyasn1" in error_msg or "EndOfStreamError" in error_msg:
                creds_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "not set")
                raise ValueError(
                    f"Invalid or corrupted Google Cloud credentials file: {creds_path}\n"
                    "The private key in your service account JSON file cannot be parsed.\n"
                    "Please download a fresh service account key from Google Cloud Console "
                    "and point GOOGLE_APPLICATION_CREDENTIALS at it."
                ) from e
            raise

        # response.text raises when the candidate was blocked or has no parts
        try:
            text = response.text
        except ValueError as e:
            logger.warning(f"{model} returned no text: {e}")
            return ""

        logger.debug(f"{model} response text: {text[:500]}")
        return text
