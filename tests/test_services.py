"""Unit tests for Maturion business logic services."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from maturion_assessment.core.interfaces import DomainRecord, PendingChunk
from maturion_assessment.core.knowledge_tiers import KnowledgeTier
from maturion_assessment.core.maturity_levels import MaturityLevel
from maturion_assessment.core.retrieval import ContextRequest, RetrievalRouter
from maturion_assessment.core.scoring import MaturityScorer
from maturion_assessment.core.services import (
    EMBEDDING_INPUT_MAX_CHARS,
    AssessmentScoringService,
    DomainScoringInput,
    EmbeddingBackfillService,
    GuidanceService,
)
from maturion_assessment.errors import (
    CollaboratorUnavailableError,
    NotFoundError,
    ScoringValidationError,
)


def _raw(criteria_id: str, current: str, target: str = "compliant", evidence: float = 80.0) -> dict:
    return {
        "criteria_id": criteria_id,
        "current_level": current,
        "target_level": target,
        "evidence_score": evidence,
    }


# ---------------------------------------------------------------------------
# AssessmentScoringService tests
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_criteria_store() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def scoring_service(mock_criteria_store: AsyncMock) -> AssessmentScoringService:
    return AssessmentScoringService(scorer=MaturityScorer(), criteria_store=mock_criteria_store)


class TestScoreDomain:
    def test_scores_raw_responses(self, scoring_service: AssessmentScoringService) -> None:
        score = scoring_service.score_domain(
            DomainScoringInput(
                domain_id="d1",
                domain_name="Leadership & Governance",
                target_level="compliant",
                criteria_scores=[_raw("c1", "compliant"), _raw("c2", "basic")],
            )
        )
        assert score.penalty_applied is True
        assert score.calculated_level is MaturityLevel.BASIC

    def test_invalid_responses_raise(self, scoring_service: AssessmentScoringService) -> None:
        with pytest.raises(ScoringValidationError):
            scoring_service.score_domain(
                DomainScoringInput(domain_id="d1", domain_name="", target_level="compliant", criteria_scores=[])
            )


class TestScoreAssessment:
    def test_returns_domains_and_progress(self, scoring_service: AssessmentScoringService) -> None:
        result = scoring_service.score_assessment(
            [
                DomainScoringInput("d1", "One", "compliant", [_raw("c1", "compliant")]),
                DomainScoringInput("d2", "Two", "reactive", [_raw("c2", "reactive")]),
            ]
        )
        assert [domain.domain_id for domain in result.domains] == ["d1", "d2"]
        assert result.progress.total_criteria == 2
        assert result.progress.completion_percentage == 100.0

    def test_errors_are_prefixed_with_domain(self, scoring_service: AssessmentScoringService) -> None:
        with pytest.raises(ScoringValidationError) as exc_info:
            scoring_service.score_assessment(
                [
                    DomainScoringInput("d1", "One", "compliant", [_raw("c1", "compliant")]),
                    DomainScoringInput("d2", "Two", "expert", [_raw("c2", "reactive")]),
                ]
            )
        assert exc_info.value.errors == ["Domain d2: Invalid domain target level 'expert'"]

    def test_no_domains(self, scoring_service: AssessmentScoringService) -> None:
        with pytest.raises(ScoringValidationError):
            scoring_service.score_assessment([])


class TestScoreStoredDomain:
    @pytest.mark.asyncio()
    async def test_scores_known_criteria(
        self,
        scoring_service: AssessmentScoringService,
        mock_criteria_store: AsyncMock,
        organization_id: uuid.UUID,
        domain_id: uuid.UUID,
    ) -> None:
        mock_criteria_store.get_domain.return_value = DomainRecord(
            domain_id=domain_id,
            organization_id=organization_id,
            name="Process Integrity",
            criteria_ids=frozenset({"c1", "c2"}),
        )

        score = await scoring_service.score_stored_domain(
            organization_id, domain_id, "compliant", [_raw("c1", "compliant"), _raw("c2", "proactive")]
        )

        assert score.domain_name == "Process Integrity"
        assert score.calculated_level is MaturityLevel.COMPLIANT
        mock_criteria_store.get_domain.assert_awaited_once_with(domain_id, organization_id)

    @pytest.mark.asyncio()
    async def test_unknown_domain_raises_not_found(
        self,
        scoring_service: AssessmentScoringService,
        mock_criteria_store: AsyncMock,
        organization_id: uuid.UUID,
        domain_id: uuid.UUID,
    ) -> None:
        mock_criteria_store.get_domain.return_value = None

        with pytest.raises(NotFoundError):
            await scoring_service.score_stored_domain(
                organization_id, domain_id, "compliant", [_raw("c1", "compliant")]
            )

    @pytest.mark.asyncio()
    async def test_foreign_criterion_is_rejected(
        self,
        scoring_service: AssessmentScoringService,
        mock_criteria_store: AsyncMock,
        organization_id: uuid.UUID,
        domain_id: uuid.UUID,
    ) -> None:
        mock_criteria_store.get_domain.return_value = DomainRecord(
            domain_id=domain_id,
            organization_id=organization_id,
            name="Process Integrity",
            criteria_ids=frozenset({"c1"}),
        )

        with pytest.raises(ScoringValidationError) as exc_info:
            await scoring_service.score_stored_domain(
                organization_id, domain_id, "compliant", [_raw("c1", "compliant"), _raw("zz", "basic")]
            )
        assert exc_info.value.errors == [
            "Criteria score 2: criterion 'zz' does not belong to domain 'Process Integrity'"
        ]


# ---------------------------------------------------------------------------
# GuidanceService tests
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_language_model() -> AsyncMock:
    model = AsyncMock()
    model.complete.return_value = "Establish a governance charter."
    return model


@pytest.fixture()
def guidance_service(
    retrieval_router: RetrievalRouter,
    mock_language_model: AsyncMock,
) -> GuidanceService:
    return GuidanceService(router=retrieval_router, language_model=mock_language_model)


class TestGuidanceService:
    @pytest.mark.asyncio()
    async def test_generates_with_provenance(
        self,
        guidance_service: GuidanceService,
        mock_language_model: AsyncMock,
        mock_retriever: AsyncMock,
        organization_id: uuid.UUID,
        chunk_factory,
    ) -> None:
        mock_retriever.search.return_value = [chunk_factory(0.8)]

        result = await guidance_service.generate_guidance(
            ContextRequest(prompt_text="Draft criteria for MPS 1", organization_id=organization_id)
        )

        assert result.content == "Establish a governance charter."
        assert result.metadata.knowledge_tier is KnowledgeTier.INTERNAL_SECURE
        assert result.metadata.has_document_context is True
        system_prompt, user_prompt = mock_language_model.complete.await_args.args
        assert "=== KNOWLEDGE BASE CONTEXT ===" in user_prompt
        assert "Maturion" in system_prompt

    @pytest.mark.asyncio()
    async def test_context_failure_continues_low_confidence(
        self,
        mock_language_model: AsyncMock,
        organization_id: uuid.UUID,
    ) -> None:
        router = MagicMock(spec=RetrievalRouter)
        router.build_context = AsyncMock(side_effect=RuntimeError("router exploded"))
        router.classify.return_value = KnowledgeTier.INTERNAL_SECURE
        service = GuidanceService(router=router, language_model=mock_language_model)

        result = await service.generate_guidance(
            ContextRequest(prompt_text="Draft criteria", organization_id=organization_id)
        )

        assert result.metadata.low_confidence is True
        assert result.metadata.has_document_context is False
        mock_language_model.complete.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_model_failure_raises_collaborator_unavailable(
        self,
        guidance_service: GuidanceService,
        mock_language_model: AsyncMock,
        organization_id: uuid.UUID,
    ) -> None:
        mock_language_model.complete.side_effect = ConnectionError("timeout")

        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            await guidance_service.generate_guidance(
                ContextRequest(prompt_text="Hello", organization_id=organization_id)
            )
        assert exc_info.value.collaborator == "language_model"
        assert exc_info.value.status_code == 503


# ---------------------------------------------------------------------------
# EmbeddingBackfillService tests
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_chunk_store() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def mock_embedder() -> AsyncMock:
    embedder = AsyncMock()
    embedder.embed.return_value = [0.1, 0.2, 0.3]
    return embedder


@pytest.fixture()
def mock_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def backfill_service(
    mock_chunk_store: AsyncMock,
    mock_embedder: AsyncMock,
    mock_sleep: AsyncMock,
) -> EmbeddingBackfillService:
    return EmbeddingBackfillService(
        chunk_store=mock_chunk_store,
        embedding_client=mock_embedder,
        batch_size=10,
        max_attempts=3,
        base_delay_seconds=1.0,
        max_delay_seconds=30.0,
        sleep=mock_sleep,
    )


class TestEmbeddingBackfill:
    @pytest.mark.asyncio()
    async def test_embeds_pending_and_skips_empty(
        self,
        backfill_service: EmbeddingBackfillService,
        mock_chunk_store: AsyncMock,
        mock_embedder: AsyncMock,
        organization_id: uuid.UUID,
    ) -> None:
        good = PendingChunk(chunk_id=uuid.uuid4(), content="x" * (EMBEDDING_INPUT_MAX_CHARS + 500))
        empty = PendingChunk(chunk_id=uuid.uuid4(), content="   ")
        mock_chunk_store.list_chunks_missing_embeddings.return_value = [good, empty]

        result = await backfill_service.run_batch(organization_id)

        assert (result.processed, result.failed, result.skipped) == (1, 0, 1)
        mock_chunk_store.list_chunks_missing_embeddings.assert_awaited_once_with(organization_id, 10)
        embedded_text = mock_embedder.embed.await_args.args[0]
        assert len(embedded_text) == EMBEDDING_INPUT_MAX_CHARS
        mock_chunk_store.save_embedding.assert_awaited_once_with(good.chunk_id, [0.1, 0.2, 0.3])

    @pytest.mark.asyncio()
    async def test_retries_with_exponential_backoff(
        self,
        backfill_service: EmbeddingBackfillService,
        mock_chunk_store: AsyncMock,
        mock_embedder: AsyncMock,
        mock_sleep: AsyncMock,
        organization_id: uuid.UUID,
    ) -> None:
        mock_chunk_store.list_chunks_missing_embeddings.return_value = [
            PendingChunk(chunk_id=uuid.uuid4(), content="policy text")
        ]
        mock_embedder.embed.side_effect = [RuntimeError("429"), RuntimeError("429"), [0.5]]

        result = await backfill_service.run_batch(organization_id)

        assert result.processed == 1
        assert [call.args[0] for call in mock_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio()
    async def test_gives_up_after_max_attempts(
        self,
        backfill_service: EmbeddingBackfillService,
        mock_chunk_store: AsyncMock,
        mock_embedder: AsyncMock,
        mock_sleep: AsyncMock,
        organization_id: uuid.UUID,
    ) -> None:
        chunk = PendingChunk(chunk_id=uuid.uuid4(), content="policy text")
        mock_chunk_store.list_chunks_missing_embeddings.return_value = [chunk]
        mock_embedder.embed.side_effect = RuntimeError("service down")

        result = await backfill_service.run_batch(organization_id)

        assert result.failed == 1
        assert result.failed_chunk_ids == [chunk.chunk_id]
        assert mock_embedder.embed.await_count == 3
        assert mock_sleep.await_count == 2
        mock_chunk_store.save_embedding.assert_not_awaited()

    def test_backoff_delay_is_capped(self, mock_chunk_store: AsyncMock, mock_embedder: AsyncMock) -> None:
        service = EmbeddingBackfillService(
            mock_chunk_store, mock_embedder, base_delay_seconds=2.0, max_delay_seconds=10.0
        )
        assert [service.backoff_delay(attempt) for attempt in range(1, 5)] == [2.0, 4.0, 8.0, 10.0]

    def test_rejects_zero_attempts(self, mock_chunk_store: AsyncMock, mock_embedder: AsyncMock) -> None:
        with pytest.raises(ValueError):
            EmbeddingBackfillService(mock_chunk_store, mock_embedder, max_attempts=0)
