"""Main FastAPI application entry point."""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import ValidationError

from zai_adapter import __version__
from zai_adapter.config import get_settings
from zai_adapter.core import UpstreamError, create_pipeline
from zai_adapter.metrics import MetricsExporter
from zai_adapter.models import ChatRequest
from zai_adapter.providers import ModelRegistry
from zai_adapter.utils import configure_logging, get_logger

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info(
        "startup",
        version=__version__,
        host=settings.host,
        port=settings.port,
        api_base=settings.api_base,
        think_tags_mode=settings.think_tags_mode.value,
        function_call=settings.function_call_enabled,
    )

    # A pipeline installed beforehand (tests) is left alone
    client = None
    if getattr(app.state, "pipeline", None) is None:
        client = httpx.AsyncClient()
        app.state.pipeline = create_pipeline(settings, client, ModelRegistry())
    app.state.settings = settings

    yield

    if client is not None:
        await client.aclose()
        app.state.pipeline = None
    logger.info("shutdown")


app = FastAPI(
    title="Z.ai OpenAI Adapter",
    description="OpenAI-compatible chat completions backed by the Z.ai chat service",
    version=__version__,
    lifespan=lifespan,
)


def _error(status_code: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": error_type}},
    )


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.get("/metrics")
async def metrics(request: Request) -> PlainTextResponse:
    """Prometheus metrics endpoint."""
    content_type, metrics_body = MetricsExporter.get_prometheus_format()
    return PlainTextResponse(
        content=metrics_body.decode("utf-8"),
        media_type=content_type
    )


@app.get("/v1/models")
@app.get("/models")
async def list_models(request: Request) -> JSONResponse:
    """Model listing endpoint."""
    pipeline = request.app.state.pipeline
    return JSONResponse(content=await pipeline.list_models())


@app.post("/v1/chat/completions", response_model=None)
@app.post("/chat/completions", response_model=None)
async def chat_completions(request: Request) -> JSONResponse | StreamingResponse:
    """Chat completions endpoint."""
    pipeline = request.app.state.pipeline

    try:
        body = await request.json()
        chat_request = ChatRequest.model_validate(body)
    except (ValueError, ValidationError) as e:
        logger.warning("request.invalid", error=str(e))
        return _error(status.HTTP_400_BAD_REQUEST, str(e), "invalid_request_error")

    logger.info(
        "request.received",
        model=chat_request.model,
        messages=len(chat_request.messages),
        stream=chat_request.stream,
        tools=len(chat_request.tools or []),
    )

    try:
        if chat_request.stream:
            chunks = pipeline.stream(chat_request)
            # Opens the upstream; failures up to here become HTTP errors
            first = await chunks.__anext__()

            async def stream_generator():
                yield first
                async for chunk in chunks:
                    yield chunk

            return StreamingResponse(
                stream_generator(),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )
        else:
            result = await pipeline.process(chat_request)
            return JSONResponse(content=result)

    except (UpstreamError, httpx.HTTPError) as e:
        logger.error("request.upstream_failed", error=str(e))
        return _error(status.HTTP_502_BAD_GATEWAY, str(e), "upstream_error")
    except Exception as e:
        logger.error("request.failed", error=str(e))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), type(e).__name__)


def main():
    """CLI entry point."""
    import uvicorn
    settings = get_settings()

    uvicorn.run(
        "zai_adapter.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
