"""Integration tests for the Maturion HTTP API.

Each test drives the FastAPI app through an async HTTP client with the
service dependency factories overridden to use mocked collaborators, so
no database or OpenAI access is needed.
"""

import uuid
from unittest.mock import AsyncMock

import pytest
from fastapi import status
from httpx import AsyncClient

from maturion_assessment.api.router import (
    get_backfill_service,
    get_guidance_service,
    get_scoring_service,
)
from maturion_assessment.core.interfaces import DomainRecord, PendingChunk
from maturion_assessment.core.retrieval import RetrievalRouter
from maturion_assessment.core.scoring import MaturityScorer
from maturion_assessment.core.services import (
    AssessmentScoringService,
    EmbeddingBackfillService,
    GuidanceService,
)
from maturion_assessment.main import app


def _criterion(criteria_id: str, current: str, target: str = "compliant") -> dict:
    return {
        "criteria_id": criteria_id,
        "current_level": current,
        "target_level": target,
        "evidence_score": 70,
    }


# ---------------------------------------------------------------------------
# Scoring endpoints
# ---------------------------------------------------------------------------


class TestScoringEndpoints:
    @pytest.mark.asyncio()
    async def test_score_domain(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/scoring/domains",
            json={
                "domain_id": "leadership",
                "domain_name": "Leadership & Governance",
                "target_level": "compliant",
                "criteria_scores": [
                    _criterion("c1", "compliant"),
                    _criterion("c2", "compliant"),
                    _criterion("c3", "Pro-active"),
                    _criterion("c4", "resilient"),
                    _criterion("c5", "basic"),
                ],
            },
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["percentage_at_target"] == 80.0
        assert body["meets_threshold"] is True
        assert body["penalty_applied"] is True
        assert body["calculated_level"] == "reactive"
        assert body["calculated_level_label"] == "Reactive"
        assert body["criteria_count"] == 5

    @pytest.mark.asyncio()
    async def test_invalid_scores_return_error_list(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/scoring/domains",
            json={
                "domain_id": "leadership",
                "target_level": "compliant",
                "criteria_scores": [
                    {"criteria_id": "c1", "current_level": "expert", "target_level": "compliant", "evidence_score": 120}
                ],
            },
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = response.json()
        assert body["error_code"] == "invalid_scoring_input"
        assert body["details"]["errors"] == [
            "Criteria score 1: Invalid current level 'expert'",
            "Criteria score 1: Evidence score must be between 0-100, got 120.0",
        ]

    @pytest.mark.asyncio()
    async def test_empty_criteria_is_rejected(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/scoring/domains",
            json={"domain_id": "leadership", "target_level": "compliant", "criteria_scores": []},
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["details"]["errors"] == ["No criteria scores provided"]

    @pytest.mark.asyncio()
    async def test_score_assessment(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/scoring/assessments",
            json={
                "domains": [
                    {"domain_id": "d1", "target_level": 3, "criteria_scores": [_criterion("c1", "compliant")]},
                    {"domain_id": "d2", "target_level": "proactive", "criteria_scores": [_criterion("c2", "basic")]},
                ]
            },
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert [domain["calculated_level"] for domain in body["domains"]] == ["compliant", "basic"]
        assert body["progress"] == {
            "total_criteria": 2,
            "completed_criteria": 1,
            "completion_percentage": 50.0,
            "overall_maturity_level": "reactive",
        }

    @pytest.mark.asyncio()
    async def test_score_stored_domain_not_found(
        self,
        client: AsyncClient,
        organization_id: uuid.UUID,
        domain_id: uuid.UUID,
    ) -> None:
        store = AsyncMock()
        store.get_domain.return_value = None
        app.dependency_overrides[get_scoring_service] = lambda: AssessmentScoringService(
            scorer=MaturityScorer(), criteria_store=store
        )

        response = await client.post(
            f"/api/v1/organizations/{organization_id}/domains/{domain_id}/score",
            json={"target_level": "compliant", "criteria_scores": [_criterion("c1", "compliant")]},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "not_found"

    @pytest.mark.asyncio()
    async def test_score_stored_domain(
        self,
        client: AsyncClient,
        organization_id: uuid.UUID,
        domain_id: uuid.UUID,
    ) -> None:
        store = AsyncMock()
        store.get_domain.return_value = DomainRecord(
            domain_id=domain_id,
            organization_id=organization_id,
            name="Process Integrity",
            criteria_ids=frozenset({"c1"}),
        )
        app.dependency_overrides[get_scoring_service] = lambda: AssessmentScoringService(
            scorer=MaturityScorer(), criteria_store=store
        )

        response = await client.post(
            f"/api/v1/organizations/{organization_id}/domains/{domain_id}/score",
            json={"target_level": "compliant", "criteria_scores": [_criterion("c1", "resilient")]},
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["domain_id"] == str(domain_id)
        assert body["domain_name"] == "Process Integrity"
        assert body["calculated_level"] == "compliant"


# ---------------------------------------------------------------------------
# AI endpoints
# ---------------------------------------------------------------------------


class TestAIEndpoints:
    @pytest.mark.asyncio()
    async def test_context_returns_bundle_and_provenance(
        self,
        client: AsyncClient,
        retrieval_router: RetrievalRouter,
        mock_retriever: AsyncMock,
        organization_id: uuid.UUID,
        chunk_factory,
    ) -> None:
        chunk = chunk_factory(0.75)
        mock_retriever.search.return_value = [chunk]
        model = AsyncMock()
        app.dependency_overrides[get_guidance_service] = lambda: GuidanceService(retrieval_router, model)

        response = await client.post(
            "/api/v1/ai/context",
            json={
                "prompt": "Generate criteria for MPS 2",
                "organization_id": str(organization_id),
                "current_domain": "Leadership",
            },
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["knowledge_tier"] == "internal_secure"
        assert [item["chunk_id"] for item in body["chunks"]] == [str(chunk.chunk_id)]
        assert body["metadata"]["source_type"] == "internal"
        assert body["metadata"]["source_document_ids"] == [str(chunk.document_id)]
        model.complete.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_guidance_returns_content_and_provenance(
        self,
        client: AsyncClient,
        retrieval_router: RetrievalRouter,
        organization_id: uuid.UUID,
    ) -> None:
        model = AsyncMock()
        model.complete.return_value = "No internal documentation covers this yet."
        app.dependency_overrides[get_guidance_service] = lambda: GuidanceService(retrieval_router, model)

        response = await client.post(
            "/api/v1/ai/guidance",
            json={"prompt": "Draft the audit structure", "organization_id": str(organization_id)},
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["content"] == "No internal documentation covers this yet."
        assert body["metadata"]["insufficient_internal_documentation"] is True
        assert body["metadata"]["low_confidence"] is False

    @pytest.mark.asyncio()
    async def test_guidance_model_outage_is_503(
        self,
        client: AsyncClient,
        retrieval_router: RetrievalRouter,
        organization_id: uuid.UUID,
    ) -> None:
        model = AsyncMock()
        model.complete.side_effect = ConnectionError("refused")
        app.dependency_overrides[get_guidance_service] = lambda: GuidanceService(retrieval_router, model)

        response = await client.post(
            "/api/v1/ai/guidance",
            json={"prompt": "Hello", "organization_id": str(organization_id)},
        )

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        body = response.json()
        assert body["error_code"] == "collaborator_unavailable"
        assert body["details"] == {"collaborator": "language_model"}

    @pytest.mark.asyncio()
    async def test_empty_prompt_is_rejected(self, client: AsyncClient, organization_id: uuid.UUID) -> None:
        response = await client.post(
            "/api/v1/ai/context",
            json={"prompt": "", "organization_id": str(organization_id)},
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


# ---------------------------------------------------------------------------
# Embedding backfill
# ---------------------------------------------------------------------------


class TestBackfillEndpoint:
    @pytest.mark.asyncio()
    async def test_backfill_reports_counts(self, client: AsyncClient, organization_id: uuid.UUID) -> None:
        store = AsyncMock()
        store.list_chunks_missing_embeddings.return_value = [
            PendingChunk(chunk_id=uuid.uuid4(), content="governance charter"),
            PendingChunk(chunk_id=uuid.uuid4(), content=""),
        ]
        embedder = AsyncMock()
        embedder.embed.return_value = [0.0, 1.0]
        app.dependency_overrides[get_backfill_service] = lambda: EmbeddingBackfillService(
            chunk_store=store, embedding_client=embedder, sleep=AsyncMock()
        )

        response = await client.post(f"/api/v1/organizations/{organization_id}/embeddings/backfill")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"processed": 1, "failed": 0, "skipped": 1, "failed_chunk_ids": []}


class TestHealth:
    @pytest.mark.asyncio()
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "ok"
