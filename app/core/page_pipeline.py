"""Page generation state machine.

CacheCheck -> Classify -> Retrieve -> Generate -> LayoutSelect ->
ImageResolve -> Persist -> Complete, with Failed reachable from Generate
and Persist. Retrieval, layout and image failures degrade; content and
persistence failures end the request without writing anything.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from app.chains.generate_content import generate_content
from app.chains.select_layout import select_layout
from app.core.errors import (
    ContentGenerationError,
    DeadlineExceededError,
    InvalidQueryError,
    PageEngineError,
    PersistenceError,
)
from app.core.hybrid_images import (
    ImageResolution,
    collect_image_prompts,
    determine_image_strategy,
)
from app.core.image_synthesis import image_update_fields, run_image_backfill
from app.core.logging import get_logger, log_with_context
from app.core.pipeline_context import PipelineContext
from app.core.progress import EventName, NullProgressSink, Step, emit_safely, progress_payload
from app.core.query_classifier import classify_query
from app.core.retry import with_deadline
from app.core.schemas_content import ContentResult, find_atom
from app.core.schemas_images import ImageMatches, RemainingPrompt
from app.core.schemas_layout import LayoutSelection
from app.core.schemas_pages import GeneratedPage, ImageStatus, PageShape, normalize_query
from app.core.schemas_retrieval import Classification, RetrievalResult

logger = get_logger(__name__)


class PipelineState(str, Enum):
    CACHE_CHECK = "cache_check"
    CLASSIFY = "classify"
    RETRIEVE = "retrieve"
    GENERATE = "generate"
    LAYOUT_SELECT = "layout_select"
    IMAGE_RESOLVE = "image_resolve"
    PERSIST = "persist"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.COMPLETE, PipelineState.FAILED)


@dataclass
class PipelineOutcome:
    state: PipelineState
    page: GeneratedPage | None = None
    error: PageEngineError | None = None
    cached: bool = False
    classification: Classification | None = None
    remaining_prompts: list[RemainingPrompt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.COMPLETE


class _Run:
    """Mutable state of one request; tracks the current pipeline state."""

    def __init__(self, query: str, session_id: str | None, sink):
        self.request_id = uuid4().hex[:12]
        self.query = query.strip()
        self.normalized = normalize_query(query)
        self.session_id = session_id
        self.sink = sink
        self.state = PipelineState.CACHE_CHECK
        self.classification: Classification | None = None

    def enter(self, state: PipelineState) -> None:
        log_with_context(
            logger,
            logging.DEBUG,
            f"{self.state.value} -> {state.value}",
            request_id=self.request_id,
        )
        self.state = state

    async def emit(self, name: EventName, payload: dict[str, Any]) -> None:
        await emit_safely(self.sink, name.value, payload)

    async def progress(self, step: Step, message: str, **extra: Any) -> None:
        await self.emit(EventName.PROGRESS, progress_payload(step, message, **extra))


class PagePipeline:
    """Runs page requests against a PipelineContext.

    Concurrent requests for the same normalized query share one run: the
    first caller generates, later callers await its outcome.
    """

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx
        self._inflight: dict[str, asyncio.Future] = {}

    async def run(self, query: str, session_id: str | None = None, sink=None) -> PipelineOutcome:
        """
        Produce a page for a query.

        Args:
            query: Visitor query
            session_id: Session for search history
            sink: ProgressSink for incremental events (optional)

        Returns:
            PipelineOutcome in COMPLETE or FAILED state; never raises for
            request-level failures
        """
        run = _Run(query or "", session_id, sink or NullProgressSink())

        if not run.normalized:
            return await self._fail(run, InvalidQueryError("Query is required"))

        shared = self._inflight.get(run.normalized)
        if shared is not None:
            log_with_context(logger, logging.INFO, "Joining in-flight request", request_id=run.request_id)
            outcome: PipelineOutcome = await asyncio.shield(shared)
            return await self._deliver_shared(run, outcome)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[run.normalized] = future
        try:
            outcome = await self._execute(run)
        except BaseException:
            future.cancel()
            raise
        else:
            future.set_result(outcome)
        finally:
            self._inflight.pop(run.normalized, None)
        return outcome

    async def _deliver_shared(self, run: _Run, outcome: PipelineOutcome) -> PipelineOutcome:
        if not outcome.ok or outcome.page is None:
            return await self._fail(run, outcome.error or PageEngineError("Generation failed"))
        await run.progress(Step.CACHE_HIT, "Found existing page")
        await self._record_history(run, outcome.page)
        await run.emit(EventName.COMPLETE, self._complete_payload(outcome.page, cached=True))
        return PipelineOutcome(
            state=PipelineState.COMPLETE,
            page=outcome.page,
            cached=True,
            classification=outcome.classification,
        )

    async def _execute(self, run: _Run) -> PipelineOutcome:
        settings = self.ctx.settings
        try:
            cached = await self._cache_check(run)
            if cached is not None:
                return cached

            try:
                page, resolution = await with_deadline(
                    self._build(run), settings.REQUEST_DEADLINE_SECONDS, "page_request"
                )
            except DeadlineExceededError as e:
                return await self._fail(run, e)

            run.enter(PipelineState.PERSIST)
            await run.progress(Step.SAVING, "Saving page...")
            try:
                stored = await self._persist(page)
            except PersistenceError as e:
                return await self._fail(run, e)

            await self._record_history(run, stored)
            self._schedule_images(stored, resolution.remaining_prompts)

            run.enter(PipelineState.COMPLETE)
            await run.progress(Step.COMPLETE, "Page ready")
            await run.emit(
                EventName.COMPLETE,
                self._complete_payload(stored, cached=False, remaining=resolution.remaining_prompts),
            )
            log_with_context(
                logger,
                logging.INFO,
                "Page generated",
                request_id=run.request_id,
                page_id=stored.id,
                blocks=len(stored.layout_blocks),
                images_pending=len(resolution.remaining_prompts),
            )
            return PipelineOutcome(
                state=PipelineState.COMPLETE,
                page=stored,
                classification=run.classification,
                remaining_prompts=resolution.remaining_prompts,
            )
        except ContentGenerationError as e:
            return await self._fail(run, e)
        except PageEngineError as e:
            return await self._fail(run, e)
        except Exception as e:
            logger.exception(f"Unexpected pipeline error in state {run.state.value}")
            return await self._fail(run, PageEngineError(f"Unexpected error: {type(e).__name__}"))

    async def _persist(self, page: GeneratedPage) -> GeneratedPage:
        """
        Insert the page and report what the store actually holds.

        The insert is not wrapped in a cancelling deadline: page writes run in
        a worker thread that keeps going after its awaiter is cancelled. The
        store client's own request timeout bounds the write instead. When the
        insert raises, the row is looked up by id so a write that landed is
        reported as saved rather than failed.

        Raises:
            PersistenceError: If the page is not stored
        """
        try:
            return await self.ctx.pages.insert(page)
        except Exception as e:
            insert_error = e

        logger.warning(f"Insert of page {page.id} failed, checking whether it landed: {insert_error}")
        try:
            stored = await self.ctx.pages.get(page.id)
        except Exception as e:
            logger.error(f"Could not verify page {page.id} after failed insert: {e}")
            stored = None
        if stored is not None:
            logger.info(f"Page {page.id} was saved despite insert error")
            return stored
        if isinstance(insert_error, PersistenceError):
            raise insert_error
        raise PersistenceError(f"Failed to save page: {insert_error}") from insert_error

    async def _cache_check(self, run: _Run) -> PipelineOutcome | None:
        settings = self.ctx.settings
        since = datetime.now(timezone.utc) - timedelta(hours=settings.PAGE_CACHE_HOURS)
        try:
            existing = await with_deadline(
                self.ctx.pages.find_by_normalized_query(run.normalized, since),
                settings.PERSIST_TIMEOUT_SECONDS,
                "page_cache_lookup",
            )
        except Exception as e:
            logger.warning(f"Page cache lookup failed, generating fresh: {e}")
            return None
        if existing is None:
            return None

        await run.progress(Step.CACHE_HIT, "Found existing page")
        if not existing.images_ready and existing.image_status is ImageStatus.PENDING:
            existing = await self._backfill_cached_images(run, existing)

        await self._record_history(run, existing)
        run.enter(PipelineState.COMPLETE)
        await run.emit(EventName.COMPLETE, self._complete_payload(existing, cached=True))
        return PipelineOutcome(
            state=PipelineState.COMPLETE,
            page=existing,
            cached=True,
            classification=classify_query(run.query),
        )

    async def _backfill_cached_images(self, run: _Run, page: GeneratedPage) -> GeneratedPage:
        """Best effort: apply any retrievable images to a cached page."""
        try:
            resolution = await self.ctx.image_resolver.resolve(page, classify_query(run.query))
            if not resolution.matches.has_any():
                return page
            updated = resolution.page
            if resolution.remaining_prompts:
                updated.images_ready = page.images_ready
                updated.image_status = page.image_status
            await self.ctx.pages.update(page.id, image_update_fields(updated))
            return updated
        except Exception as e:
            logger.warning(f"Image backfill for cached page {page.id} failed: {e}")
            return page

    async def _build(self, run: _Run) -> tuple[GeneratedPage, ImageResolution]:
        settings = self.ctx.settings

        run.enter(PipelineState.CLASSIFY)
        await run.progress(Step.CLASSIFYING, "Understanding your question...")
        classification = classify_query(run.query)
        run.classification = classification

        run.enter(PipelineState.RETRIEVE)
        await run.progress(Step.RAG_SEARCH, "Searching product knowledge...")
        retrieval = await self._retrieve(run, classification)
        await run.emit(
            EventName.CLASSIFICATION,
            {
                "type": classification.type,
                "confidence": classification.confidence,
                "keywords": list(classification.keywords),
                "sources_found": len(retrieval.source_ids),
                "cached": retrieval.cached,
            },
        )

        run.enter(PipelineState.GENERATE)
        await run.progress(Step.CONTENT_GENERATING, "Writing your page...")
        content = await generate_content(
            run.query,
            classification,
            retrieval.context,
            self.ctx.text_model,
            model_name=settings.CONTENT_MODEL,
            max_tokens=settings.CONTENT_MAX_TOKENS,
            policy=self.ctx.policy,
            timeout=settings.CONTENT_TIMEOUT_SECONDS,
        )
        await self._emit_content_preview(run, content)

        run.enter(PipelineState.LAYOUT_SELECT)
        await run.progress(Step.LAYOUT_SELECTING, "Designing the layout...")
        layout = await select_layout(
            content.content_atoms,
            content.content_type,
            content.metadata,
            self.ctx.text_model,
            query=run.query,
            layout_hints=content.layout_hints,
            model_name=settings.LAYOUT_MODEL,
            max_tokens=settings.LAYOUT_MAX_TOKENS,
            policy=self.ctx.policy,
            timeout=settings.LAYOUT_TIMEOUT_SECONDS,
        )

        page = self._assemble(run, classification, retrieval, content, layout)

        run.enter(PipelineState.IMAGE_RESOLVE)
        await run.progress(Step.IMAGES_SEARCHING, "Finding images...")
        resolution = await self._resolve_images(page, classification)
        await self._emit_image_events(run, resolution)

        return resolution.page, resolution

    async def _retrieve(self, run: _Run, classification: Classification) -> RetrievalResult:
        try:
            return await self.ctx.retriever.retrieve(run.query, classification=classification)
        except Exception as e:
            logger.warning(f"Retrieval failed, continuing ungrounded: {e}")
            return RetrievalResult(classification=classification)

    def _assemble(
        self,
        run: _Run,
        classification: Classification,
        retrieval: RetrievalResult,
        content: ContentResult,
        layout: LayoutSelection,
    ) -> GeneratedPage:
        keywords = content.keywords or list(classification.keywords)
        return GeneratedPage(
            query=run.query,
            normalized_query=run.normalized,
            content_type=content.content_type or classification.type,
            keywords=keywords,
            metadata=content.metadata,
            content_atoms=content.content_atoms,
            layout_blocks=layout.blocks,
            page_shape=PageShape.ATOMS,
            rag_source_ids=retrieval.source_ids,
            session_id=run.session_id,
        )

    async def _resolve_images(
        self, page: GeneratedPage, classification: Classification
    ) -> ImageResolution:
        try:
            return await self.ctx.image_resolver.resolve(page, classification)
        except Exception as e:
            logger.warning(f"Image resolution failed, all images will be generated: {e}")
            strategy = determine_image_strategy(classification, page.content_atoms, page.metadata)
            prompts = collect_image_prompts(page, strategy)
            page = page.model_copy(
                update={
                    "images_ready": not prompts,
                    "image_status": ImageStatus.PENDING if prompts else ImageStatus.READY,
                }
            )
            return ImageResolution(
                page=page, strategy=strategy, matches=ImageMatches(), remaining_prompts=prompts
            )

    async def _emit_content_preview(self, run: _Run, content: ContentResult) -> None:
        metadata = content.metadata
        await run.emit(
            EventName.CONTENT_PREVIEW,
            {
                "title": metadata.title,
                "description": metadata.description,
                "content_type": content.content_type,
            },
        )
        heading = find_atom(content.content_atoms, "heading")
        paragraph = find_atom(content.content_atoms, "paragraph")
        await run.emit(
            EventName.CONTENT_HERO,
            {
                "title": heading.text if heading else metadata.title,
                "subtitle": paragraph.text if paragraph else metadata.description,
                "image_prompt": metadata.primary_image_prompt,
            },
        )

    async def _emit_image_events(self, run: _Run, resolution: ImageResolution) -> None:
        page = resolution.page
        await run.emit(
            EventName.IMAGES_FOUND,
            {
                "rag_images": resolution.matches.count(),
                "strategy": resolution.strategy.model_dump(),
            },
        )
        if page.metadata.image_url:
            await run.emit(EventName.CONTENT_HERO_IMAGE, {"image_url": page.metadata.image_url})
        features = find_atom(page.content_atoms, "feature_set")
        if features is not None:
            await run.emit(
                EventName.CONTENT_FEATURES,
                {"items": [item.model_dump(mode="json") for item in features.items]},
            )
        related = find_atom(page.content_atoms, "related")
        if related is not None:
            await run.emit(
                EventName.CONTENT_RELATED,
                {"items": [item.model_dump(mode="json") for item in related.items]},
            )
        if resolution.remaining_prompts:
            await run.progress(
                Step.IMAGES_PENDING,
                "Images will be generated in the background",
                images_to_generate=len(resolution.remaining_prompts),
            )

    async def _record_history(self, run: _Run, page: GeneratedPage) -> None:
        if not run.session_id or self.ctx.history is None:
            return
        try:
            await self.ctx.history.add(run.session_id, run.query, page.id)
        except Exception as e:
            logger.warning(f"Failed to record search history: {e}")

    def _schedule_images(self, page: GeneratedPage, prompts: list[RemainingPrompt]) -> None:
        if not prompts or self.ctx.image_synthesizer is None:
            return
        self.ctx.spawn(
            self._image_job(page.id, prompts),
            name=f"images-{page.id}",
        )

    async def _image_job(self, page_id: str, prompts: list[RemainingPrompt]) -> None:
        try:
            await run_image_backfill(
                page_id,
                prompts,
                self.ctx.image_synthesizer,
                self.ctx.pages,
                max_attempts=self.ctx.settings.IMAGE_SYNTHESIS_MAX_ATTEMPTS,
            )
        except Exception:
            logger.exception(f"Image job for page {page_id} crashed")

    async def _fail(self, run: _Run, error: PageEngineError) -> PipelineOutcome:
        failed_in = run.state
        run.enter(PipelineState.FAILED)
        log_with_context(
            logger,
            logging.ERROR,
            f"Page request failed in {failed_in.value}: {error}",
            request_id=run.request_id,
            error_type=type(error).__name__,
        )
        await run.emit(EventName.ERROR, {"message": str(error), "state": failed_in.value})
        return PipelineOutcome(
            state=PipelineState.FAILED, error=error, classification=run.classification
        )

    @staticmethod
    def _complete_payload(
        page: GeneratedPage, cached: bool, remaining: list[RemainingPrompt] | None = None
    ) -> dict[str, Any]:
        return {
            "page": page.model_dump(mode="json"),
            "cached": cached,
            "images_to_generate": len(remaining or []),
        }
