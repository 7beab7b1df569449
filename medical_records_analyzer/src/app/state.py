from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ingestion.format_classifier import DocumentFormat

UNSPECIFIED_CONDITION = "Unspecified condition"

CATEGORIES = (
    "MUSCULOSKELETAL",
    "MENTAL_HEALTH",
    "RESPIRATORY",
    "CARDIOVASCULAR",
    "DIGESTIVE",
    "HEARING",
    "SKIN",
    "NEUROLOGICAL",
    "ENDOCRINE",
    "GENITOURINARY",
    "OTHER",
)

# Keys the model has been seen to use for each field, tried in order.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "condition_name": ("conditionName", "condition_name", "condition", "diagnosis", "name"),
    "diagnostic_code": ("diagnosticCode", "diagnostic_code", "dc", "code"),
    "cfr_reference": ("cfrReference", "cfr_reference", "cfr"),
    "onset_date": ("onsetDate", "onset_date", "onset", "date"),
    "connection_type": ("connectionType", "connection_type", "connection"),
    "is_presumptive": ("isPresumptive", "is_presumptive", "presumptive"),
    "source_document": ("sourceDocument", "source_document", "source"),
    "supporting_quotes": ("supportingQuotes", "supporting_quotes", "quotes"),
    "category": ("category", "body_system", "bodySystem"),
    "page_number": ("pageNumber", "page_number", "page"),
}

_TRUE_STRINGS = {"true", "yes", "y", "1"}


def _lookup(obj: Dict[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        if key in obj and obj[key] is not None:
            return obj[key]
    return None


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return _as_text(value).lower() in _TRUE_STRINGS


def _as_quotes(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [q.strip() for q in value if isinstance(q, str) and q.strip()]


def _as_category(value: Any) -> str:
    key = _as_text(value).upper().replace("-", "_").replace(" ", "_")
    return key if key in CATEGORIES else "OTHER"


def _as_connection(value: Any) -> Literal["direct", "secondary"]:
    return "secondary" if _as_text(value).lower() == "secondary" else "direct"


def looks_like_diagnosis(obj: Any) -> bool:
    return isinstance(obj, dict) and any(key in obj for key in FIELD_ALIASES["condition_name"])


class ExtractedDiagnosis(BaseModel):
    """One claimable medical finding.
    Attributes:
        condition_name: Diagnosis as written in the record; never empty.
        diagnostic_code: 38 CFR Part 4 diagnostic code, empty if unknown.
        cfr_reference: Regulation section for the code, empty if unknown.
        onset_date: Free-form "MM/YYYY" or empty.
        connection_type: "direct" or "secondary" service connection.
        is_presumptive: True if the condition is on a presumptive list.
        source_document: Human-readable provenance note.
        supporting_quotes: Short excerpts from the record.
        category: Body-system bucket from CATEGORIES.
        page_number: 1-based page hint. Back-filled values for chunked scans
            are the chunk's first page, so they are approximate.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    condition_name: str = UNSPECIFIED_CONDITION
    diagnostic_code: str = ""
    cfr_reference: str = ""
    onset_date: str = ""
    connection_type: Literal["direct", "secondary"] = "direct"
    is_presumptive: bool = False
    source_document: str = ""
    supporting_quotes: List[str] = Field(default_factory=list)
    category: str = "OTHER"
    page_number: Optional[str] = None

    @classmethod
    def from_untrusted(cls, obj: Dict[str, Any]) -> "ExtractedDiagnosis":
        """Build a diagnosis from model JSON without trusting its shape."""
        return cls(
            condition_name=_as_text(_lookup(obj, "condition_name")) or UNSPECIFIED_CONDITION,
            diagnostic_code=_as_text(_lookup(obj, "diagnostic_code")),
            cfr_reference=_as_text(_lookup(obj, "cfr_reference")),
            onset_date=_as_text(_lookup(obj, "onset_date")),
            connection_type=_as_connection(_lookup(obj, "connection_type")),
            is_presumptive=_as_bool(_lookup(obj, "is_presumptive")),
            source_document=_as_text(_lookup(obj, "source_document")),
            supporting_quotes=_as_quotes(_lookup(obj, "supporting_quotes")),
            category=_as_category(_lookup(obj, "category")),
            page_number=_as_text(_lookup(obj, "page_number")) or None,
        )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AnalysisResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    diagnoses: List[ExtractedDiagnosis] = Field(default_factory=list)
    raw_analysis: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {
            "diagnoses": [d.to_json() for d in self.diagnoses],
            "rawAnalysis": self.raw_analysis,
        }


@dataclass
class ChunkOutcome:
    """A page-range chunk that the model answered."""
    label: str
    raw_text: str
    diagnoses: List[ExtractedDiagnosis] = field(default_factory=list)


@dataclass
class ChunkError:
    """A page-range chunk that failed; kept for the audit trail."""
    label: str
    error: str
    exception: Optional[Exception] = None


ChunkResult = Union[ChunkOutcome, ChunkError]


class PipelineState(BaseModel):
    """State object carried through the LangGraph pipeline.
    Attributes:
        file_name: Name of the uploaded document.
        mime_type: Declared MIME type, possibly wrong or generic.
        file_bytes: Raw document bytes.
        pre_extracted_text: Text already produced upstream (e.g. client-side OCR).
        document_format: Branch chosen by the format classifier.
        extracted_text: Usable local text, None if the document needs vision/OCR.
        text_source: Which extraction branch produced ``extracted_text``.
        diagnoses: Normalized, deduplicated findings.
        raw_analysis: Raw model output kept for audit.
    """
    file_name: str
    mime_type: str
    file_bytes: bytes = b""
    pre_extracted_text: Optional[str] = None
    document_format: Optional[DocumentFormat] = None
    extracted_text: Optional[str] = None
    text_source: str = ""
    diagnoses: List[ExtractedDiagnosis] = []
    raw_analysis: str = ""
