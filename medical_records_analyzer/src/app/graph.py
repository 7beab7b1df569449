from typing import Optional, Union

from langgraph.graph import StateGraph, END
from loguru import logger

from app.nodes import (
    ClassifyNode,
    CodeEnrichmentNode,
    ExtractTextNode,
    ImageAnalysisNode,
    NoTextNode,
    ScannedPdfNode,
    TextAnalysisNode,
    route_after_extraction,
)
from app.prompts import build_system_prompt
from app.state import AnalysisResult, PipelineState
from config.settings import Settings, get_settings
from ingestion.text_cleaner import decode_file_payload
from services.diagnostic_codes import DiagnosticCodeLookup
from services.model_fallback import ChatClient, FallbackChatCaller
from services.vertex_client import VertexChatClient


def build_graph(
    text_node,
    image_node,
    scanned_pdf_node,
    enrich_node,
):
    graph = StateGraph(PipelineState)
    graph.add_node("classify", ClassifyNode())
    graph.add_node("extract", ExtractTextNode())
    graph.add_node("analyze_text", text_node)
    graph.add_node("analyze_image", image_node)
    graph.add_node("analyze_scanned_pdf", scanned_pdf_node)
    graph.add_node("no_text", NoTextNode())
    graph.add_node("enrich_codes", enrich_node)

    graph.set_entry_point("classify")
    graph.add_edge("classify", "extract")
    graph.add_conditional_edges(
        "extract",
        route_after_extraction,
        ["analyze_text", "analyze_image", "analyze_scanned_pdf", "no_text"],
    )
    for node in ("analyze_text", "analyze_image", "analyze_scanned_pdf"):
        graph.add_edge(node, "enrich_codes")
    graph.add_edge("enrich_codes", END)
    graph.add_edge("no_text", END)

    return graph.compile()


class MedicalRecordsAnalyzer:
    """Entry point: one uploaded document in, structured diagnoses out."""

    def __init__(self, graph):
        self.graph = graph

    async def analyze(
        self,
        file_data: Union[str, bytes, None],
        mime_type: str,
        file_name: str,
        pre_extracted_text: Optional[str] = None,
        file_buffer: Optional[bytes] = None,
    ) -> AnalysisResult:
        """Analyze one document.

        ``file_data`` may be raw bytes, base64 or a base64 data URL; a
        ``file_buffer`` read from disk takes precedence over it. Rejects only
        when every model failed or a local extraction library crashed.
        """
        data = file_buffer if file_buffer is not None else decode_file_payload(file_data or b"")
        state = PipelineState(
            file_name=file_name or "document",
            mime_type=mime_type or "application/octet-stream",
            file_bytes=data,
            pre_extracted_text=pre_extracted_text,
        )
        result = await self.graph.ainvoke(state)

        # LangGraph returns a dict, convert to PipelineState for validation
        result_state = PipelineState(**result) if isinstance(result, dict) else result
        logger.info(f"Analysis of {result_state.file_name} found {len(result_state.diagnoses)} diagnoses")
        return AnalysisResult(diagnoses=result_state.diagnoses, raw_analysis=result_state.raw_analysis)


def build_analyzer(
    settings: Optional[Settings] = None,
    chat_client: Optional[ChatClient] = None,
    code_lookup: Optional[DiagnosticCodeLookup] = None,
) -> MedicalRecordsAnalyzer:
    settings = settings or get_settings()
    if code_lookup is None:
        code_lookup = DiagnosticCodeLookup(settings.diagnostic_codes_csv)
    if chat_client is None:
        chat_client = VertexChatClient(settings.gcp_project, settings.gcp_location)

    caller = FallbackChatCaller(
        chat_client,
        settings.fallback_models(),
        max_output_tokens=settings.max_output_tokens,
        temperature=settings.temperature,
        base_delay=settings.retry_base_delay,
    )
    system_prompt = build_system_prompt(code_lookup.reference_table())
    model = settings.extraction_model

    graph = build_graph(
        TextAnalysisNode(caller, model, system_prompt, settings.max_text_chars),
        ImageAnalysisNode(caller, model, system_prompt),
        ScannedPdfNode(
            caller,
            model,
            system_prompt,
            settings.pdf_chunk_pages,
            settings.one_shot_max_bytes,
        ),
        CodeEnrichmentNode(code_lookup),
    )
    return MedicalRecordsAnalyzer(graph)
