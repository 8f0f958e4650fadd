"""Core processing modules."""

from zai_adapter.core.decoder import UpstreamEventDecoder, decode_events
from zai_adapter.core.extractor import ContentExtractor, StreamState, create_extractor
from zai_adapter.core.pipeline import TranslationPipeline, create_pipeline, with_heartbeat
from zai_adapter.core.preprocessor import RequestPreprocessor, create_preprocessor
from zai_adapter.core.synthesizer import ResponseSynthesizer
from zai_adapter.core.tool_calls import ToolCallExtractor, create_tool_call_extractor
from zai_adapter.core.upstream import TokenProvider, UpstreamError, UpstreamPoster

__all__ = [
    "UpstreamEventDecoder",
    "decode_events",
    "ContentExtractor",
    "StreamState",
    "create_extractor",
    "TranslationPipeline",
    "create_pipeline",
    "with_heartbeat",
    "RequestPreprocessor",
    "create_preprocessor",
    "ResponseSynthesizer",
    "ToolCallExtractor",
    "create_tool_call_extractor",
    "TokenProvider",
    "UpstreamError",
    "UpstreamPoster",
]
