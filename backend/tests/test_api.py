"""Endpoint tests through the ASGI app with faked components."""

from __future__ import annotations

import datetime
import json
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from clinical_rag.agents.refinement import GuidelineReviewAgent
from clinical_rag.config import Settings
from clinical_rag.dependencies import (
    get_decision_service,
    get_embedder,
    get_orchestrator,
    get_review_agent,
    get_settings,
    get_store,
)
from clinical_rag.errors import ClinicalDecisionError, CompletionFailure
from clinical_rag.main import app
from clinical_rag.models.rag import EssentialInfo, EssentialSummary, Recommendation
from clinical_rag.models.schemas import ClinicalDecision, Patient
from clinical_rag.services.guideline_store import QueryCache
from clinical_rag.services.rag_service import RAGOrchestrator

from conftest import FakeStore

PATIENT = {"name": "Sam", "age": 3, "weight": 14.2, "sex": "M"}
RAG_BODY = {
    "patient": PATIENT,
    "condition": "croup",
    "severity": "mild",
    "presenting_complaint": "Barking cough",
    "max_chunks": 3,
}


@pytest.fixture
def orchestrator(embedder, store, llm) -> RAGOrchestrator:
    llm.replies[llm.FILTER] = json.dumps(
        [{"chunk_id": f"croup:{i}:0", "relevance_score": 95 - i * 10} for i in range(5)]
    )
    llm.replies[llm.SYNTHESIS] = json.dumps({"synthesis": "Steroids."})
    llm.replies[llm.RECOMMENDATION] = json.dumps({"confidence": 80})
    orchestrator = RAGOrchestrator.from_llm(embedder, store, llm)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return orchestrator


@pytest.fixture
def test_settings() -> Settings:
    settings = Settings(store_insert_batch_size=2, agent_max_iterations=2)
    app.dependency_overrides[get_settings] = lambda: settings
    return settings


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


# --- RAG ---


async def test_rag_guidelines(client: AsyncClient, orchestrator) -> None:
    response = await client.post("/api/v1/rag/guidelines", json=RAG_BODY)
    assert response.status_code == 200
    data = response.json()
    assert [c["id"] for c in data["filtered_chunks"]] == [f"croup:{i}:0" for i in range(5)]
    assert data["filtered_chunks"][0]["relevance_score"] == 95
    assert data["synthesis"]["synthesis"] == "Steroids."
    assert data["no_evidence"] is False
    assert "embedding" not in data["retrieved_chunks"][0]
    assert data["transitions"][-1]["state"] == "done"


async def test_rag_essential(client: AsyncClient, orchestrator) -> None:
    response = await client.post(
        "/api/v1/rag/essential", json={**RAG_BODY, "threshold": 0.8}
    )
    assert response.status_code == 200
    data = response.json()
    assert [c["relevance_score"] for c in data["highly_relevant_chunks"]] == [95, 85]
    assert data["summary"]["synthesis"] == "Steroids."


async def test_rag_provider_failure_is_503(client: AsyncClient, orchestrator, llm) -> None:
    llm.replies[llm.FILTER] = CompletionFailure("CLI not found")
    response = await client.post("/api/v1/rag/guidelines", json=RAG_BODY)
    assert response.status_code == 503
    detail = response.json()["detail"]
    assert detail["code"] == "LLM_UNAVAILABLE"
    assert detail["details"] == {"stage": "filtering"}


async def test_rag_no_evidence_is_200(client: AsyncClient, embedder, llm) -> None:
    orchestrator = RAGOrchestrator.from_llm(embedder, FakeStore(), llm)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    response = await client.post("/api/v1/rag/guidelines", json=RAG_BODY)
    assert response.status_code == 200
    assert response.json()["no_evidence"] is True


async def test_rag_invalid_request_is_400(client: AsyncClient, orchestrator) -> None:
    response = await client.post(
        "/api/v1/rag/guidelines", json={**RAG_BODY, "severity": "critical"}
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "INVALID_REQUEST"
    assert any("severity" in e for e in detail["details"]["errors"])


async def test_rag_review(
    client: AsyncClient, orchestrator, llm, embedder, store, test_settings
) -> None:
    llm.replies[llm.REVIEW] = json.dumps({"reasoning": "enough", "confidence": 85})
    agent = GuidelineReviewAgent(llm, embedder, store)
    app.dependency_overrides[get_review_agent] = lambda: agent

    response = await client.post("/api/v1/rag/review", json=RAG_BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["converged"] is True
    assert data["decision"]["agent"] == "guideline-review"
    assert len(data["evidence"]) == 5


# --- Dose calculator ---


async def test_dose_calculator(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/dose-calculator",
        json={
            "medication": "Dexamethasone",
            "weight": 14.2,
            "dose": 0.6,
            "dose_unit": "mg",
            "frequency": "once",
            "route": "oral",
            "patient_age": 36,
            "patient_weight": 14.2,
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["calculated_dose"] == pytest.approx(8.52)
    assert data["evidence_level"] == "C"


async def test_dose_calculator_validation_errors(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/dose-calculator", json={"medication": "Dexamethasone", "weight": 14.2}
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "INVALID_REQUEST"
    assert "Valid dose per kg is required" in detail["details"]["errors"]


async def test_dose_calculator_rejects_negative_cap(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/dose-calculator",
        json={
            "medication": "Dexamethasone",
            "weight": 14.2,
            "dose": 0.6,
            "dose_unit": "mg",
            "frequency": "once",
            "route": "oral",
            "patient_age": 36,
            "patient_weight": 14.2,
            "max_dose": -5,
        },
    )
    assert response.status_code == 400
    assert response.json()["detail"]["details"]["errors"] == ["Maximum dose must be positive"]


async def test_dose_calculator_bad_unit(client: AsyncClient) -> None:
    response = await client.post("/api/v1/dose-calculator", json={"weight_unit": "stone"})
    assert response.status_code == 400


# --- Guidelines ---


async def test_upload_guidelines(client: AsyncClient, embedder, test_settings) -> None:
    store = FakeStore()
    app.dependency_overrides[get_embedder] = lambda: embedder
    app.dependency_overrides[get_store] = lambda: store

    response = await client.post(
        "/api/v1/guidelines/upload",
        json={
            "chunks": [
                {"text": f"Paragraph {i}", "metadata": {"source": "croup.json", "chunk_id": i}}
                for i in range(3)
            ]
            + [{"metadata": {"source": "broken.json"}}],
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 4
    assert data["successful"] == 3
    assert data["failed"] == 1
    assert data["total_batches"] == 2
    assert [c.id for c in store.chunks] == [f"croup.json:{i}:0" for i in range(3)]


async def test_upload_nothing_valid_is_400(client: AsyncClient, embedder, test_settings) -> None:
    app.dependency_overrides[get_embedder] = lambda: embedder
    app.dependency_overrides[get_store] = lambda: FakeStore()

    response = await client.post("/api/v1/guidelines/upload", json={"chunks": [{"text": ""}]})

    assert response.status_code == 400


async def test_cache_stats_and_clear(client: AsyncClient, chunk_factory) -> None:
    store = FakeStore()
    store.cache = QueryCache(ttl_seconds=60)
    store.cache.put([0.1], 3, [chunk_factory()])
    store.cache.get([0.1], 3)
    app.dependency_overrides[get_store] = lambda: store

    response = await client.get("/api/v1/guidelines/cache")
    assert response.json() == {
        "enabled": True,
        "size": 1,
        "hits": 1,
        "misses": 0,
        "ttl_seconds": 60,
    }

    response = await client.delete("/api/v1/guidelines/cache")
    assert response.status_code == 200
    assert response.json()["size"] == 0


async def test_cache_disabled(client: AsyncClient) -> None:
    store = FakeStore()
    store.cache = None
    app.dependency_overrides[get_store] = lambda: store

    response = await client.get("/api/v1/guidelines/cache")
    assert response.json()["enabled"] is False


# --- Clinical decision ---


MOCK_DECISION = ClinicalDecision(
    patient=Patient(age=3, weight=14.2),
    condition="Croup",
    severity="mild",
    guidelines=EssentialInfo(
        summary=EssentialSummary(synthesis="Steroids.", final_recommendation=Recommendation()),
        highly_relevant_chunks=[],
    ),
    medication_doses=[],
    management_plan="Give dexamethasone.",
    confidence=45,
    evidence_summary="Based on clinical assessment of Croup",
    warnings=[],
    timestamp=datetime.datetime(2024, 1, 15, 12, 0, 0, tzinfo=datetime.UTC),
)


async def test_clinical_decision(client: AsyncClient) -> None:
    service = AsyncMock()
    service.decide.return_value = MOCK_DECISION
    app.dependency_overrides[get_decision_service] = lambda: service

    response = await client.post(
        "/api/v1/clinical-decision", json={"transcript": "3yo with croup", "max_chunks": 4}
    )

    assert response.status_code == 200
    assert response.json()["condition"] == "Croup"
    service.decide.assert_awaited_once_with("3yo with croup", max_chunks=4)


async def test_clinical_decision_bad_transcript(client: AsyncClient) -> None:
    service = AsyncMock()
    service.decide.side_effect = ClinicalDecisionError(
        "Failed to extract patient data from transcript", code="INVALID_TRANSCRIPT"
    )
    app.dependency_overrides[get_decision_service] = lambda: service

    response = await client.post("/api/v1/clinical-decision", json={"transcript": "hello"})

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "INVALID_TRANSCRIPT"


async def test_clinical_decision_empty_transcript(client: AsyncClient) -> None:
    app.dependency_overrides[get_decision_service] = lambda: AsyncMock()

    response = await client.post("/api/v1/clinical-decision", json={"transcript": ""})
    assert response.status_code == 400
