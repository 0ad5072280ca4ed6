"""Page generation, retrieval, history and image endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from app.core.errors import (
    ContentGenerationError,
    DeadlineExceededError,
    InvalidQueryError,
    PageEngineError,
)
from app.core.image_synthesis import (
    apply_generated_images,
    image_update_fields,
    validate_prompts,
)
from app.core.logging import get_logger
from app.core.page_pipeline import PagePipeline
from app.core.pipeline_context import PipelineContext
from app.core.progress import EventName, QueueProgressSink, sse_event
from app.core.rate_limiter import RateLimiter, generation_key
from app.core.schemas_pages import (
    GeneratedPage,
    GenerateImagesRequest,
    GenerateImagesResponse,
    GeneratePageRequest,
    GeneratePageResponse,
    HistoryResponse,
    ImageStatus,
    SuggestedTopic,
)

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def get_context(request: Request) -> PipelineContext:
    return request.app.state.pipeline_context


def get_pipeline(request: Request) -> PagePipeline:
    return request.app.state.page_pipeline


def enforce_rate_limit(request: Request, session_id: str | None) -> None:
    """Raise 429 when the caller has exhausted its generation budget."""
    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return
    client_host = request.client.host if request.client else None
    limiter.check_limit(generation_key(session_id, client_host))


def error_status(error: PageEngineError | None) -> int:
    """HTTP status for a failed page request."""
    if isinstance(error, InvalidQueryError):
        return 400
    if isinstance(error, DeadlineExceededError):
        return 504
    if isinstance(error, ContentGenerationError):
        return 502
    return 500


@router.post("/generate-page", response_model=GeneratePageResponse)
async def generate_page(
    body: GeneratePageRequest,
    request: Request,
    pipeline: PagePipeline = Depends(get_pipeline),
) -> GeneratePageResponse:
    """
    Generate (or fetch a cached) page for a query.

    Raises:
        HTTPException 400: Empty query
        HTTPException 429: Rate limited
        HTTPException 502: Content model failure
        HTTPException 504: Request deadline exceeded
        HTTPException 500: Page could not be saved
    """
    if not body.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")
    enforce_rate_limit(request, body.session_id)

    outcome = await pipeline.run(body.query, session_id=body.session_id)
    if not outcome.ok or outcome.page is None:
        raise HTTPException(
            status_code=error_status(outcome.error),
            detail=str(outcome.error) if outcome.error else "Page generation failed",
        )
    return GeneratePageResponse(
        page=outcome.page,
        cached=outcome.cached,
        remaining_prompts=outcome.remaining_prompts,
    )


@router.post("/generate-page-stream")
async def generate_page_stream(
    body: GeneratePageRequest,
    request: Request,
    pipeline: PagePipeline = Depends(get_pipeline),
    ctx: PipelineContext = Depends(get_context),
) -> StreamingResponse:
    """
    Generate a page with progress streamed as server-sent events.

    Events: progress, classification, content_preview, content_hero,
    images_found, content_hero_image, content_features, content_related and
    exactly one terminal complete or error.

    A client that disconnects stops receiving events; the page is still
    generated and saved.
    """
    if not body.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")
    enforce_rate_limit(request, body.session_id)

    sink = QueueProgressSink()

    async def produce() -> None:
        try:
            await pipeline.run(body.query, session_id=body.session_id, sink=sink)
        except Exception as e:
            logger.exception(f"Streaming pipeline crashed: {e}")
            await sink.emit(EventName.ERROR.value, {"message": "Page generation failed"})
        finally:
            sink.finish()

    ctx.spawn(produce(), name="page-stream")

    async def stream():
        try:
            async for event in sink.events():
                if await request.is_disconnected():
                    logger.info("Client disconnected from page stream")
                    break
                yield sse_event(event.name, event.payload)
        finally:
            sink.close()

    return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/pages/{page_id}", response_model=GeneratedPage)
async def get_page(page_id: str, ctx: PipelineContext = Depends(get_context)) -> GeneratedPage:
    try:
        page = await ctx.pages.get(page_id)
    except Exception as e:
        logger.exception(f"Failed to load page {page_id}")
        raise HTTPException(status_code=500, detail="Failed to load page") from e
    if page is None:
        raise HTTPException(status_code=404, detail="Page not found")
    return page


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    session_id: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: PipelineContext = Depends(get_context),
) -> HistoryResponse:
    """Most recent searches for a session, newest first."""
    if ctx.history is None:
        return HistoryResponse(session_id=session_id, entries=[])
    try:
        entries = await ctx.history.list_for_session(session_id, limit)
    except Exception as e:
        logger.exception(f"Failed to list history for session {session_id}")
        raise HTTPException(status_code=500, detail="Failed to load history") from e
    return HistoryResponse(session_id=session_id, entries=entries)


@router.post("/generate-images", response_model=GenerateImagesResponse)
async def generate_images(
    body: GenerateImagesRequest,
    ctx: PipelineContext = Depends(get_context),
) -> GenerateImagesResponse:
    """
    Synthesize images for a saved page and write them into its slots.

    Raises:
        HTTPException 400: No valid prompts
        HTTPException 404: Page not found
        HTTPException 503: Image synthesis is not configured
    """
    prompts = validate_prompts(body.prompts)
    if not prompts:
        raise HTTPException(status_code=400, detail="No valid prompts provided")
    if ctx.image_synthesizer is None:
        raise HTTPException(status_code=503, detail="Image generation unavailable")

    page = await ctx.pages.get(body.page_id)
    if page is None:
        raise HTTPException(status_code=404, detail="Page not found")

    results = await ctx.image_synthesizer.synthesize(page.id, prompts)
    generated = [r for r in results if r.ok]
    failed = len(results) - len(generated)

    if generated:
        page = apply_generated_images(page, generated)
    if not failed:
        page.images_ready = True
        page.image_status = ImageStatus.READY
    if generated or not failed:
        try:
            await ctx.pages.update(page.id, image_update_fields(page))
        except Exception as e:
            logger.exception(f"Failed to save images for page {page.id}")
            raise HTTPException(status_code=500, detail="Failed to save images") from e

    return GenerateImagesResponse(
        page_id=page.id,
        generated=len(generated),
        failed=failed,
        images_ready=page.images_ready,
    )


@router.get("/suggested-topics", response_model=list[SuggestedTopic])
async def suggested_topics(ctx: PipelineContext = Depends(get_context)) -> list[SuggestedTopic]:
    if ctx.topics is None:
        return []
    try:
        return await ctx.topics.list_active()
    except Exception as e:
        logger.warning(f"Failed to load suggested topics: {e}")
        return []
