import asyncio
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from app.aggregator import fold_chunk_results, merge_diagnoses
from app.prompts import document_messages, image_messages, text_messages
from app.response_parser import parse_diagnoses
from app.state import ChunkError, ChunkOutcome, ChunkResult, ExtractedDiagnosis, PipelineState
from ingestion.format_classifier import classify_format
from ingestion.pdf_splitter import PageRange, copy_page_range, open_pdf, page_ranges
from ingestion.text_extractor import extract_text
from services.diagnostic_codes import DiagnosticCodeLookup
from services.model_fallback import FallbackChatCaller

DOCUMENT_OPTIONS = {"document_ocr": True}

NO_TEXT_MESSAGE = (
    "No text could be extracted from {file_name}. The file may be empty, corrupted, "
    "or in an unsupported format. Please add your conditions manually."
)


class ClassifyNode:
    def __call__(self, state: PipelineState) -> Dict[str, Any]:
        document_format = classify_format(state.mime_type, state.file_name)
        logger.info(f"Classified {state.file_name} ({state.mime_type}) as {document_format.value}")
        return {"document_format": document_format}


class ExtractTextNode:
    async def __call__(self, state: PipelineState) -> Dict[str, Any]:
        """Run local extraction off the event loop.
        Args:
            state: Pipeline state with file bytes and the classified format.
        Returns:
            Updates for ``extracted_text`` and ``text_source``.
        """
        outcome = await asyncio.to_thread(
            extract_text, state.document_format, state.file_bytes, state.pre_extracted_text
        )
        return {"extracted_text": outcome.text, "text_source": outcome.source}


def route_after_extraction(state: PipelineState) -> str:
    if state.extracted_text:
        return "analyze_text"
    if state.text_source == "image":
        return "analyze_image"
    if state.text_source == "scanned_pdf":
        return "analyze_scanned_pdf"
    return "no_text"


class NoTextNode:
    def __call__(self, state: PipelineState) -> Dict[str, Any]:
        logger.warning(f"No usable text in {state.file_name} ({state.text_source})")
        return {"diagnoses": [], "raw_analysis": NO_TEXT_MESSAGE.format(file_name=state.file_name)}


class _ModelNode:
    def __init__(self, caller: FallbackChatCaller, model: str, system_prompt: str):
        self.caller = caller
        self.model = model
        self.system_prompt = system_prompt

    async def _ask(
        self, messages: List[Dict[str, Any]], extra_options: Optional[Dict[str, Any]] = None
    ) -> Tuple[str, List[ExtractedDiagnosis]]:
        raw = await self.caller.complete(self.model, messages, extra_options)
        return raw, parse_diagnoses(raw)


class TextAnalysisNode(_ModelNode):
    def __init__(self, caller: FallbackChatCaller, model: str, system_prompt: str, max_chars: int):
        super().__init__(caller, model, system_prompt)
        self.max_chars = max_chars

    async def __call__(self, state: PipelineState) -> Dict[str, Any]:
        logger.info(f"Analyzing {len(state.extracted_text)} chars of text from {state.file_name}")
        messages = text_messages(self.system_prompt, state.file_name, state.extracted_text, self.max_chars)
        raw, diagnoses = await self._ask(messages)
        return {"diagnoses": merge_diagnoses([diagnoses]), "raw_analysis": raw}


class ImageAnalysisNode(_ModelNode):
    async def __call__(self, state: PipelineState) -> Dict[str, Any]:
        mime_type = state.mime_type.lower()
        if mime_type == "image/jpg":
            mime_type = "image/jpeg"
        logger.info(f"Analyzing image {state.file_name} in vision mode")
        messages = image_messages(self.system_prompt, state.file_name, state.file_bytes, mime_type)
        raw, diagnoses = await self._ask(messages)
        return {"diagnoses": merge_diagnoses([diagnoses]), "raw_analysis": raw}


class ScannedPdfNode(_ModelNode):
    """OCR path for PDFs without a usable text layer.

    Small scans get one whole-file attempt first. Otherwise, or when that
    attempt fails or finds nothing, the PDF is split into page-range chunks
    that are sent one after another.
    """

    def __init__(
        self,
        caller: FallbackChatCaller,
        model: str,
        system_prompt: str,
        pages_per_chunk: int,
        one_shot_max_bytes: int,
    ):
        super().__init__(caller, model, system_prompt)
        self.pages_per_chunk = pages_per_chunk
        self.one_shot_max_bytes = one_shot_max_bytes

    async def __call__(self, state: PipelineState) -> Dict[str, Any]:
        size = len(state.file_bytes)
        if size < self.one_shot_max_bytes:
            try:
                messages = document_messages(self.system_prompt, state.file_name, state.file_bytes)
                raw, diagnoses = await self._ask(messages, DOCUMENT_OPTIONS)
                if diagnoses:
                    return {"diagnoses": merge_diagnoses([diagnoses]), "raw_analysis": raw}
                logger.info(f"One-shot OCR of {state.file_name} found nothing, retrying in chunks")
            except Exception as e:
                logger.warning(f"One-shot OCR of {state.file_name} failed, retrying in chunks: {e}")
        else:
            logger.info(f"{state.file_name} is {size / (1024 * 1024):.1f}MB, skipping one-shot OCR")

        results = await self._analyze_chunks(state)
        failures = [r for r in results if isinstance(r, ChunkError)]
        if failures and len(failures) == len(results):
            # Nothing succeeded: surface the cause instead of an empty result
            raise failures[-1].exception

        result = fold_chunk_results(results)
        return {"diagnoses": result.diagnoses, "raw_analysis": result.raw_analysis}

    async def _analyze_chunks(self, state: PipelineState) -> List[ChunkResult]:
        results: List[ChunkResult] = []
        source = await asyncio.to_thread(open_pdf, state.file_bytes)
        with source:
            ranges = page_ranges(source.page_count, self.pages_per_chunk)
            logger.info(f"Processing {state.file_name} as {len(ranges)} chunks of {self.pages_per_chunk} pages")
            for page_range in ranges:
                results.append(await self._analyze_chunk(source, page_range, state.file_name))
        return results

    async def _analyze_chunk(self, source, page_range: PageRange, file_name: str) -> ChunkResult:
        try:
            chunk = await asyncio.to_thread(copy_page_range, source, page_range)
            messages = document_messages(self.system_prompt, file_name, chunk, page_range.label)
            del chunk
            raw, diagnoses = await self._ask(messages, DOCUMENT_OPTIONS)
        except Exception as e:
            logger.warning(f"Chunk {page_range.label} of {file_name} failed: {e}")
            return ChunkError(label=page_range.label, error=str(e), exception=e)

        # Approximate: the finding may be on any page of the chunk
        for diagnosis in diagnoses:
            if not diagnosis.page_number:
                diagnosis.page_number = str(page_range.first_page_number)
        logger.info(f"Chunk {page_range.label}: {len(diagnoses)} diagnoses")
        return ChunkOutcome(label=page_range.label, raw_text=raw, diagnoses=diagnoses)


class CodeEnrichmentNode:
    def __init__(self, code_lookup: Optional[DiagnosticCodeLookup]):
        self.code_lookup = code_lookup

    def __call__(self, state: PipelineState) -> Dict[str, Any]:
        """Fill an empty CFR reference or OTHER category from the diagnostic code table.
        Args:
            state: Pipeline state with normalized ``diagnoses``.
        Returns:
            Updates for ``diagnoses``; values the model supplied are never replaced.
        """
        if self.code_lookup is None:
            return {"diagnoses": state.diagnoses}

        enriched = []
        for diagnosis in state.diagnoses:
            match = None
            if diagnosis.diagnostic_code and (not diagnosis.cfr_reference or diagnosis.category == "OTHER"):
                match = self.code_lookup.lookup(diagnosis.diagnostic_code)
            if match:
                diagnosis = diagnosis.model_copy(
                    update={
                        "cfr_reference": diagnosis.cfr_reference or match["cfr_reference"],
                        "category": match["category"] if diagnosis.category == "OTHER" else diagnosis.category,
                    }
                )
            enriched.append(diagnosis)
        return {"diagnoses": enriched}
