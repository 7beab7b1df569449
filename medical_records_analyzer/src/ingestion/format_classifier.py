from enum import Enum


class DocumentFormat(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    DOCX = "docx"
    LEGACY_DOC = "legacy_doc"
    TEXT_LIKE = "text_like"
    UNKNOWN = "unknown"


IMAGE_MIME_TYPES = {
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
    "image/webp",
    "image/tiff",
    "image/bmp",
}
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_EXTENSIONS = (".txt", ".csv", ".json", ".xml", ".md")


def classify_format(mime_type: str | None, file_name: str | None) -> DocumentFormat:
    """Pick the extraction branch for an upload.

    The declared MIME type is not authoritative on its own: some upload paths
    send ``application/octet-stream`` for everything, so the filename extension
    is checked alongside it.
    """
    mime = (mime_type or "").strip().lower()
    name = (file_name or "").strip().lower()

    if mime in IMAGE_MIME_TYPES:
        return DocumentFormat.IMAGE
    if mime == "application/pdf" or name.endswith(".pdf"):
        return DocumentFormat.PDF
    if mime == DOCX_MIME_TYPE or name.endswith(".docx"):
        return DocumentFormat.DOCX
    if mime == "application/msword" or name.endswith(".doc"):
        return DocumentFormat.LEGACY_DOC
    if (
        mime.startswith("text/")
        or any(kind in mime for kind in ("json", "xml", "csv"))
        or name.endswith(TEXT_EXTENSIONS)
    ):
        return DocumentFormat.TEXT_LIKE
    return DocumentFormat.UNKNOWN
