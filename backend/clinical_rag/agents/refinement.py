"""Bounded refinement loop for the guideline review agent.

The loop is a fixed point search: review the evidence, and while the agent
is unsure and asks for more, run its suggested searches and review again,
up to ``max_iterations`` rounds.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence

from clinical_rag.errors import JSONExtractionError
from clinical_rag.llm.client import CompletionProvider
from clinical_rag.llm.json_extract import parse_llm_model, preview
from clinical_rag.models.agents import AgentDecision, RefinementOutcome
from clinical_rag.models.rag import GuidelineChunk
from clinical_rag.models.schemas import Patient
from clinical_rag.prompts import GUIDELINE_REVIEW_PROMPT, GUIDELINES_SYSTEM_PROMPT
from clinical_rag.services.embedding_service import Embedder
from clinical_rag.services.guideline_store import GuidelineStore
from clinical_rag.services.prompt_context import format_chunks, format_patient

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 3
DEFAULT_CONFIDENCE_THRESHOLD = 80.0
FALLBACK_CONFIDENCE = 50.0
MAX_QUERIES_PER_ROUND = 3

RefineStep = Callable[[AgentDecision, int], Awaitable[AgentDecision]]


def has_converged(decisions: Sequence[AgentDecision], threshold: float) -> bool:
    """True when the mean confidence of ``decisions`` reaches ``threshold``."""
    if not decisions:
        return False
    mean = sum(d.confidence for d in decisions) / len(decisions)
    return mean >= threshold


async def refine_until_converged(
    initial: AgentDecision,
    step: RefineStep,
    *,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    peers: Sequence[AgentDecision] = (),
) -> RefinementOutcome:
    """Call ``step`` until the decisions converge, the agent stops asking
    for more information, or ``max_iterations`` rounds have run.

    ``peers`` are other agents' decisions that count towards convergence
    but are not refined here.
    """
    if max_iterations < 0:
        raise ValueError("max_iterations must not be negative")

    decision = initial
    history = [initial]
    iterations = 0
    while iterations < max_iterations:
        if has_converged([*peers, decision], threshold) or not decision.needs_more_info:
            break
        iterations += 1
        logger.info("Refinement iteration %d (confidence=%.0f)", iterations, decision.confidence)
        decision = await step(decision, iterations)
        history.append(decision)

    return RefinementOutcome(
        decision=decision,
        history=history,
        iterations=iterations,
        converged=has_converged([*peers, decision], threshold),
    )


class GuidelineReviewAgent:
    """Judges whether retrieved evidence suffices and searches for more if not."""

    name = "guideline-review"

    def __init__(
        self,
        llm: CompletionProvider,
        embedder: Embedder,
        store: GuidelineStore,
        *,
        per_query_limit: int = 5,
        max_queries: int = MAX_QUERIES_PER_ROUND,
        preview_chars: int = 500,
    ) -> None:
        self.llm = llm
        self.embedder = embedder
        self.store = store
        self.per_query_limit = per_query_limit
        self.max_queries = max_queries
        self.preview_chars = preview_chars

    async def review(
        self,
        chunks: Sequence[GuidelineChunk],
        patient: Patient,
        condition: str,
        severity: str,
    ) -> AgentDecision:
        prompt = GUIDELINE_REVIEW_PROMPT.format(
            patient_info=format_patient(patient),
            condition=condition,
            severity=severity,
            guideline_chunks=format_chunks(chunks, preview_chars=self.preview_chars),
        )
        response = await self.llm.complete(GUIDELINES_SYSTEM_PROMPT, prompt)
        try:
            decision = parse_llm_model(response, AgentDecision)
        except JSONExtractionError as e:
            logger.warning("Review fallback (%s). Response: %s", e, preview(response))
            # needs_more_info=False ends the loop instead of retrying blind
            return AgentDecision(
                agent=self.name,
                reasoning="Review unavailable due to parsing error",
                confidence=FALLBACK_CONFIDENCE,
                concerns=["Clinical judgment required - evidence review failed"],
                needs_more_info=False,
            )
        return decision.model_copy(update={"agent": self.name})

    async def search(self, queries: Sequence[str]) -> list[GuidelineChunk]:
        found: list[GuidelineChunk] = []
        for q in queries[: self.max_queries]:
            vector = await self.embedder.embed(q)
            found.extend(await self.store.nearest_neighbors(vector, self.per_query_limit))
        return found

    async def run(
        self,
        chunks: Sequence[GuidelineChunk],
        patient: Patient,
        condition: str,
        severity: str,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> RefinementOutcome:
        """Review ``chunks`` and refine with the agent's own search queries."""
        evidence: dict[str, GuidelineChunk] = {c.id: c for c in chunks}

        async def step(decision: AgentDecision, iteration: int) -> AgentDecision:
            new = await self.search(decision.suggested_queries)
            added = 0
            for chunk in new:
                if chunk.id not in evidence:
                    evidence[chunk.id] = chunk
                    added += 1
            logger.info(
                "Iteration %d: %d queries, %d new chunks",
                iteration,
                min(len(decision.suggested_queries), self.max_queries),
                added,
            )
            return await self.review(list(evidence.values()), patient, condition, severity)

        initial = await self.review(chunks, patient, condition, severity)
        outcome = await refine_until_converged(
            initial, step, max_iterations=max_iterations, threshold=threshold
        )
        return outcome.model_copy(update={"evidence": list(evidence.values())})
