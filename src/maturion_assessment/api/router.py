"""FastAPI router for the Maturion assessment API.

All routes are thin — they validate inputs, delegate to services, and
serialize responses. No business logic here. Service errors propagate as
MaturionError and are rendered by the handlers registered in main.py.

API prefix: /api/v1
"""

import uuid
from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import APIRouter, Depends
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession

from maturion_assessment.adapters.database import get_db_session, get_session_factory
from maturion_assessment.adapters.openai_client import (
    OpenAIChatClient,
    OpenAIEmbeddingClient,
    build_openai_client,
)
from maturion_assessment.adapters.repositories import (
    SemanticDocumentRetriever,
    SqlCriteriaStore,
    SqlDocumentChunkStore,
    SqlInsightStore,
    SqlOrganizationRepository,
    SqlPolicyRepository,
)
from maturion_assessment.api.schemas import (
    AIRequest,
    AssessmentProgressResponse,
    AssessmentScoreResponse,
    BackfillResponse,
    ContextResponse,
    DomainScoreResponse,
    GuidanceResponse,
    ProvenanceResponse,
    ScoreAssessmentRequest,
    ScoreDomainRequest,
    ScoreStoredDomainRequest,
)
from maturion_assessment.core.retrieval import ContextRequest, RetrievalRouter
from maturion_assessment.core.scoring import MaturityScorer
from maturion_assessment.core.services import (
    AssessmentScoringService,
    DomainScoringInput,
    EmbeddingBackfillService,
    GuidanceService,
)
from maturion_assessment.settings import Settings

router = APIRouter(tags=["Maturion Assessment"])


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings."""
    return Settings()


@lru_cache
def get_openai_client() -> AsyncOpenAI:
    """Return the process-wide async OpenAI client."""
    settings = get_settings()
    return build_openai_client(settings.openai_api_key, settings.openai_timeout_seconds)


def get_scoring_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> AssessmentScoringService:
    """Build AssessmentScoringService with injected dependencies."""
    return AssessmentScoringService(
        scorer=MaturityScorer(threshold_percent=settings.scoring_threshold_percent),
        criteria_store=SqlCriteriaStore(session),
    )


def get_stateless_scoring_service(
    settings: Settings = Depends(get_settings),
) -> AssessmentScoringService:
    """Build AssessmentScoringService for requests that carry all their data."""
    return AssessmentScoringService(
        scorer=MaturityScorer(threshold_percent=settings.scoring_threshold_percent),
    )


def get_embedding_client(
    client: AsyncOpenAI = Depends(get_openai_client),
    settings: Settings = Depends(get_settings),
) -> OpenAIEmbeddingClient:
    """Build the embedding collaborator."""
    return OpenAIEmbeddingClient(client, model=settings.openai_embedding_model)


async def get_retrieval_router(
    embedding_client: OpenAIEmbeddingClient = Depends(get_embedding_client),
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[RetrievalRouter, None]:
    """Build RetrievalRouter with injected dependencies.

    The router runs its sub-queries concurrently, and an AsyncSession must not
    be shared between concurrent tasks, so each repository gets its own
    read-only session. A session only checks out a connection on first use.
    """
    session_factory = get_session_factory()
    async with (
        session_factory() as chunk_session,
        session_factory() as policy_session,
        session_factory() as organization_session,
        session_factory() as insight_session,
    ):
        yield RetrievalRouter(
            document_retriever=SemanticDocumentRetriever(
                chunk_store=SqlDocumentChunkStore(chunk_session),
                embedding_client=embedding_client,
            ),
            policy_repository=SqlPolicyRepository(policy_session),
            organization_repository=SqlOrganizationRepository(organization_session),
            insight_store=SqlInsightStore(insight_session),
            top_n=settings.retrieval_top_n,
            query_limit=settings.retrieval_query_limit,
            similarity_threshold=settings.retrieval_similarity_threshold,
            query_timeout_seconds=settings.retrieval_query_timeout_seconds,
            max_queries=settings.retrieval_max_queries,
            insight_window_days=settings.insight_window_days,
            insight_fetch_limit=settings.insight_fetch_limit,
            policy_title=settings.policy_document_title,
        )


def get_guidance_service(
    retrieval_router: RetrievalRouter = Depends(get_retrieval_router),
    client: AsyncOpenAI = Depends(get_openai_client),
    settings: Settings = Depends(get_settings),
) -> GuidanceService:
    """Build GuidanceService with injected dependencies."""
    return GuidanceService(
        router=retrieval_router,
        language_model=OpenAIChatClient(
            client,
            model=settings.openai_chat_model,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
        ),
    )


def get_backfill_service(
    session: AsyncSession = Depends(get_db_session),
    embedding_client: OpenAIEmbeddingClient = Depends(get_embedding_client),
    settings: Settings = Depends(get_settings),
) -> EmbeddingBackfillService:
    """Build EmbeddingBackfillService with injected dependencies."""
    return EmbeddingBackfillService(
        chunk_store=SqlDocumentChunkStore(session),
        embedding_client=embedding_client,
        batch_size=settings.backfill_batch_size,
        max_attempts=settings.backfill_max_attempts,
        base_delay_seconds=settings.backfill_base_delay_seconds,
        max_delay_seconds=settings.backfill_max_delay_seconds,
    )


def _to_scoring_input(body: ScoreDomainRequest) -> DomainScoringInput:
    return DomainScoringInput(
        domain_id=body.domain_id,
        domain_name=body.domain_name,
        target_level=body.target_level,
        criteria_scores=[score.model_dump() for score in body.criteria_scores],
    )


def _to_context_request(body: AIRequest) -> ContextRequest:
    return ContextRequest(
        prompt_text=body.prompt,
        organization_id=body.organization_id,
        free_text_context=body.context,
        current_domain=body.current_domain,
        allow_external_context=body.allow_external_context,
        mps_number=body.mps_number,
    )


# ---------------------------------------------------------------------------
# Scoring endpoints
# ---------------------------------------------------------------------------


@router.post("/scoring/domains", response_model=DomainScoreResponse)
async def score_domain(
    body: ScoreDomainRequest,
    service: AssessmentScoringService = Depends(get_stateless_scoring_service),
) -> DomainScoreResponse:
    """Score one domain's criteria against its target level."""
    score = service.score_domain(_to_scoring_input(body))
    return DomainScoreResponse.from_score(score)


@router.post("/scoring/assessments", response_model=AssessmentScoreResponse)
async def score_assessment(
    body: ScoreAssessmentRequest,
    service: AssessmentScoringService = Depends(get_stateless_scoring_service),
) -> AssessmentScoreResponse:
    """Score several domains and return per-domain results with overall progress."""
    result = service.score_assessment([_to_scoring_input(domain) for domain in body.domains])
    return AssessmentScoreResponse(
        domains=[DomainScoreResponse.from_score(score) for score in result.domains],
        progress=AssessmentProgressResponse.from_progress(result.progress),
    )


@router.post(
    "/organizations/{organization_id}/domains/{domain_id}/score",
    response_model=DomainScoreResponse,
)
async def score_stored_domain(
    organization_id: uuid.UUID,
    domain_id: uuid.UUID,
    body: ScoreStoredDomainRequest,
    service: AssessmentScoringService = Depends(get_scoring_service),
) -> DomainScoreResponse:
    """Score responses against the criteria stored for a domain."""
    score = await service.score_stored_domain(
        organization_id=organization_id,
        domain_id=domain_id,
        target_level=body.target_level,
        raw_scores=[score.model_dump() for score in body.criteria_scores],
    )
    return DomainScoreResponse.from_score(score)


# ---------------------------------------------------------------------------
# AI endpoints
# ---------------------------------------------------------------------------


@router.post("/ai/context", response_model=ContextResponse)
async def build_context(
    body: AIRequest,
    service: GuidanceService = Depends(get_guidance_service),
) -> ContextResponse:
    """Classify a request and return the tier-scoped context without calling the model."""
    routed = await service.build_context(_to_context_request(body))
    return ContextResponse.from_bundle(routed.bundle, routed.metadata)


@router.post("/ai/guidance", response_model=GuidanceResponse)
async def generate_guidance(
    body: AIRequest,
    service: GuidanceService = Depends(get_guidance_service),
) -> GuidanceResponse:
    """Generate guidance from tier-scoped context, with provenance metadata."""
    result = await service.generate_guidance(_to_context_request(body))
    return GuidanceResponse(
        content=result.content,
        metadata=ProvenanceResponse.from_metadata(result.metadata),
    )


# ---------------------------------------------------------------------------
# Embedding backfill
# ---------------------------------------------------------------------------


@router.post(
    "/organizations/{organization_id}/embeddings/backfill",
    response_model=BackfillResponse,
)
async def backfill_embeddings(
    organization_id: uuid.UUID,
    service: EmbeddingBackfillService = Depends(get_backfill_service),
) -> BackfillResponse:
    """Run one embedding backfill pass over the organisation's chunks."""
    result = await service.run_batch(organization_id)
    return BackfillResponse.from_result(result)
