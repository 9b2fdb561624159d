"""RAG orchestrator: retrieve -> filter -> synthesize/recommend -> RAGResult."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from clinical_rag.errors import ClinicalRAGError, RAGPipelineError
from clinical_rag.llm.client import CompletionProvider
from clinical_rag.models.rag import (
    EssentialInfo,
    EssentialSummary,
    GuidelineChunk,
    PipelineState,
    RAGResult,
    RankedChunk,
    RetrievalMetrics,
    StateTransition,
)
from clinical_rag.models.schemas import Patient
from clinical_rag.services.embedding_service import Embedder
from clinical_rag.services.guideline_store import GuidelineStore
from clinical_rag.services.recommendation_service import RecommendationGenerator
from clinical_rag.services.relevance_filter import RELEVANCE_THRESHOLD, RelevanceFilter
from clinical_rag.services.synthesis_service import SynthesisEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Relevance scores are stored on a 0-100 scale; essential-info thresholds
# are fractions of that scale.
SCORE_SCALE = 100.0
DEFAULT_ESSENTIAL_THRESHOLD = 0.7
DEFAULT_MAX_CHUNKS = 10


def retrieval_query(condition: str, severity: str) -> str:
    return f"{condition} {severity} treatment guidelines"


class PipelineRun:
    """State and timings of one pipeline invocation."""

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self._clock = clock
        self._origin = clock()
        self.state = PipelineState.IDLE
        self.transitions: list[StateTransition] = []
        self.stage_timings: dict[str, float] = {}
        self.failed_stage: PipelineState | None = None

    def elapsed_ms(self) -> float:
        return (self._clock() - self._origin) * 1000

    def enter(self, state: PipelineState) -> None:
        logger.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(StateTransition(state=state, elapsed_ms=self.elapsed_ms()))

    async def stage(self, state: PipelineState, work: Awaitable[T]) -> T:
        self.enter(state)
        started = self._clock()
        try:
            result = await work
        except ClinicalRAGError:
            if self.failed_stage is None:
                self.failed_stage = state
            raise
        self.stage_timings[state.value] = (self._clock() - started) * 1000
        return result


class RAGOrchestrator:
    """Runs the guideline pipeline for one clinical scenario per call.

    The orchestrator holds no per-request state, so one instance serves
    concurrent requests.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: GuidelineStore,
        relevance_filter: RelevanceFilter,
        synthesis_engine: SynthesisEngine,
        recommendation_generator: RecommendationGenerator,
        *,
        concurrent_generation: bool = True,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        if max_chunks < 1:
            raise ValueError("max_chunks must be at least 1")
        self.embedder = embedder
        self.store = store
        self.relevance_filter = relevance_filter
        self.synthesis_engine = synthesis_engine
        self.recommendation_generator = recommendation_generator
        self.concurrent_generation = concurrent_generation
        self.max_chunks = max_chunks
        self._clock = clock

    @classmethod
    def from_llm(
        cls,
        embedder: Embedder,
        store: GuidelineStore,
        llm: CompletionProvider,
        *,
        relevance_threshold: float = RELEVANCE_THRESHOLD,
        preview_chars: int = 500,
        concurrent_generation: bool = True,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
    ) -> RAGOrchestrator:
        """Build every LLM-backed stage on a single completion client."""
        return cls(
            embedder,
            store,
            RelevanceFilter(llm, threshold=relevance_threshold, preview_chars=preview_chars),
            SynthesisEngine(llm),
            RecommendationGenerator(llm),
            concurrent_generation=concurrent_generation,
            max_chunks=max_chunks,
        )

    async def retrieve(self, condition: str, severity: str, limit: int) -> list[GuidelineChunk]:
        query = retrieval_query(condition, severity)
        logger.info("Retrieving guidelines: query=%r limit=%d", query, limit)
        vector = await self.embedder.embed(query)
        return await self.store.nearest_neighbors(vector, limit)

    async def process_rag(
        self,
        patient: Patient,
        condition: str,
        severity: str,
        presenting_complaint: str,
        max_chunks: int | None = None,
    ) -> RAGResult:
        """Run the full pipeline.

        Retrieves ``2 * max_chunks`` candidates, keeps the relevant ones and
        feeds the best ``max_chunks`` to synthesis and recommendation. Provider
        and store failures abort the run as ``RAGPipelineError``; malformed LLM
        output is absorbed by each stage's fallback. ``max_chunks`` defaults
        to the orchestrator's configured value.
        """
        if max_chunks is None:
            max_chunks = self.max_chunks
        if max_chunks < 1:
            raise ValueError("max_chunks must be at least 1")

        run = PipelineRun(self._clock)
        logger.info(
            "=== RAG request: condition=%r severity=%r max_chunks=%d ===",
            condition,
            severity,
            max_chunks,
        )
        try:
            retrieval_started = run.elapsed_ms()
            retrieved = await run.stage(
                PipelineState.RETRIEVING,
                self.retrieve(condition, severity, max_chunks * 2),
            )
            filtered = await run.stage(
                PipelineState.FILTERING,
                self.relevance_filter.rank(retrieved, patient, condition, severity),
            )
            top = filtered[:max_chunks]
            if self.concurrent_generation:
                synthesis, recommendation = await _gather_or_cancel(
                    run.stage(
                        PipelineState.SYNTHESIZING,
                        self.synthesis_engine.synthesize(top, patient, condition, severity),
                    ),
                    run.stage(
                        PipelineState.RECOMMENDING,
                        self.recommendation_generator.generate(
                            top, patient, condition, severity, presenting_complaint
                        ),
                    ),
                )
            else:
                synthesis = await run.stage(
                    PipelineState.SYNTHESIZING,
                    self.synthesis_engine.synthesize(top, patient, condition, severity),
                )
                recommendation = await run.stage(
                    PipelineState.RECOMMENDING,
                    self.recommendation_generator.generate(
                        top, patient, condition, severity, presenting_complaint
                    ),
                )
            processing_time = run.elapsed_ms() - retrieval_started
        except ClinicalRAGError as e:
            failed_stage = (run.failed_stage or run.state).value
            run.enter(PipelineState.ERRORED)
            logger.error("RAG pipeline failed during %s: %s", failed_stage, e.message)
            raise RAGPipelineError(failed_stage, e) from e

        run.enter(PipelineState.DONE)
        metrics = RetrievalMetrics(
            total_chunks=len(retrieved),
            relevant_chunks=len(filtered),
            average_relevance_score=_average_score(filtered),
            processing_time_ms=processing_time,
            stage_timings_ms=dict(run.stage_timings),
        )
        logger.info(
            "RAG complete: %d retrieved, %d relevant, avg score %.1f, %.0fms",
            metrics.total_chunks,
            metrics.relevant_chunks,
            metrics.average_relevance_score,
            metrics.processing_time_ms,
        )
        return RAGResult(
            retrieved_chunks=retrieved,
            filtered_chunks=filtered,
            synthesis=synthesis,
            final_recommendation=recommendation,
            retrieval_metrics=metrics,
            transitions=run.transitions,
            no_evidence=not filtered,
        )


async def _gather_or_cancel(*works: Awaitable) -> list:
    """Await independent stages together; a failure cancels the rest."""
    tasks = [asyncio.ensure_future(w) for w in works]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        # retrieve every outcome, a second failure included
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _average_score(chunks: list[RankedChunk]) -> float:
    if not chunks:
        return 0.0
    return sum(c.relevance_score for c in chunks) / len(chunks)


def get_essential_info(
    result: RAGResult, threshold: float = DEFAULT_ESSENTIAL_THRESHOLD
) -> EssentialInfo:
    """Reduce a RAGResult to the synthesis, recommendation and best chunks.

    ``threshold`` is a fraction in [0, 1]; a chunk qualifies when
    ``relevance_score / 100`` is strictly greater than it.
    """
    if not 0 <= threshold <= 1:
        raise ValueError(f"threshold must be between 0 and 1, got {threshold}")
    highly_relevant = sorted(
        (c for c in result.filtered_chunks if c.relevance_score / SCORE_SCALE > threshold),
        key=lambda c: c.relevance_score,
        reverse=True,
    )
    return EssentialInfo(
        summary=EssentialSummary(
            synthesis=result.synthesis.synthesis,
            final_recommendation=result.final_recommendation,
        ),
        highly_relevant_chunks=highly_relevant,
    )
