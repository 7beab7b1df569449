from typing import Iterable, List

from app.state import AnalysisResult, ChunkError, ChunkOutcome, ChunkResult, ExtractedDiagnosis


def dedupe_key(diagnosis: ExtractedDiagnosis) -> str:
    return diagnosis.condition_name.strip().lower()


def merge_diagnoses(groups: Iterable[List[ExtractedDiagnosis]]) -> List[ExtractedDiagnosis]:
    """Merge per-chunk lists, keeping the first occurrence of each condition name."""
    merged: List[ExtractedDiagnosis] = []
    seen = set()
    for group in groups:
        for diagnosis in group:
            key = dedupe_key(diagnosis)
            if key in seen:
                continue
            seen.add(key)
            merged.append(diagnosis)
    return merged


def section(label: str, body: str) -> str:
    return f"--- {label} ---\n{body}"


def fold_chunk_results(results: Iterable[ChunkResult]) -> AnalysisResult:
    """Combine chunk outcomes; errors only contribute to the audit text."""
    groups: List[List[ExtractedDiagnosis]] = []
    sections: List[str] = []
    for result in results:
        if isinstance(result, ChunkOutcome):
            groups.append(result.diagnoses)
            sections.append(section(result.label, result.raw_text))
        elif isinstance(result, ChunkError):
            sections.append(section(result.label, f"[error] {result.error}"))
    return AnalysisResult(diagnoses=merge_diagnoses(groups), raw_analysis="\n\n".join(sections))
