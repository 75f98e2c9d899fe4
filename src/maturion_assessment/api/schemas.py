"""Pydantic request/response models for the Maturion assessment API.

All API inputs and outputs are typed Pydantic models — never raw dicts.
Maturity levels are accepted as names ("compliant", "Pro-active") or ranks
(1-5) and validated by the scoring engine, so malformed levels surface in
the same error list as every other scoring problem.
"""

import uuid

from pydantic import BaseModel, Field

from maturion_assessment.core.retrieval import ContextBundle, ProvenanceMetadata
from maturion_assessment.core.scoring import AssessmentProgress, DomainScore
from maturion_assessment.core.services import BackfillResult

LevelInput = str | int


# ---------------------------------------------------------------------------
# Scoring schemas
# ---------------------------------------------------------------------------


class CriteriaScoreRequest(BaseModel):
    """One criterion response."""

    criteria_id: str = Field("", description="Criterion identifier")
    current_level: LevelInput | None = Field(None, description="Level currently demonstrated")
    target_level: LevelInput | None = Field(None, description="Level the criterion is expected to reach")
    evidence_score: float | None = Field(None, description="Evidence strength, 0-100")


class ScoreDomainRequest(BaseModel):
    """Request body for scoring one domain."""

    domain_id: str = Field(..., min_length=1)
    domain_name: str = Field("", max_length=255)
    target_level: LevelInput = Field(..., description="The domain's target maturity level")
    criteria_scores: list[CriteriaScoreRequest] = Field(default_factory=list)


class ScoreAssessmentRequest(BaseModel):
    """Request body for scoring several domains of one assessment."""

    domains: list[ScoreDomainRequest] = Field(default_factory=list)


class ScoreStoredDomainRequest(BaseModel):
    """Request body for scoring responses against a stored domain."""

    target_level: LevelInput = Field(..., description="The domain's target maturity level")
    criteria_scores: list[CriteriaScoreRequest] = Field(default_factory=list)


class DomainScoreResponse(BaseModel):
    """Calculated maturity of one domain."""

    domain_id: str
    domain_name: str
    calculated_level: str
    calculated_level_label: str
    target_level: str
    meets_threshold: bool
    penalty_applied: bool
    percentage_at_target: float
    criteria_count: int

    @classmethod
    def from_score(cls, score: DomainScore) -> "DomainScoreResponse":
        return cls(
            domain_id=score.domain_id,
            domain_name=score.domain_name,
            calculated_level=score.calculated_level.value,
            calculated_level_label=score.calculated_level.label,
            target_level=score.target_level.value,
            meets_threshold=score.meets_threshold,
            penalty_applied=score.penalty_applied,
            percentage_at_target=score.percentage_at_target,
            criteria_count=len(score.criteria_scores),
        )


class AssessmentProgressResponse(BaseModel):
    """Overall progress across an assessment's domains."""

    total_criteria: int
    completed_criteria: int
    completion_percentage: float
    overall_maturity_level: str

    @classmethod
    def from_progress(cls, progress: AssessmentProgress) -> "AssessmentProgressResponse":
        return cls(
            total_criteria=progress.total_criteria,
            completed_criteria=progress.completed_criteria,
            completion_percentage=progress.completion_percentage,
            overall_maturity_level=progress.overall_maturity_level.value,
        )


class AssessmentScoreResponse(BaseModel):
    """Per-domain results plus overall progress."""

    domains: list[DomainScoreResponse]
    progress: AssessmentProgressResponse


# ---------------------------------------------------------------------------
# AI context and guidance schemas
# ---------------------------------------------------------------------------


class AIRequest(BaseModel):
    """Request body for context building and guidance generation."""

    prompt: str = Field(..., min_length=1, max_length=10000)
    organization_id: uuid.UUID
    context: str = Field("", max_length=10000, description="Free-text context from the calling screen")
    current_domain: str | None = Field(None, max_length=255)
    allow_external_context: bool = False
    mps_number: int | None = Field(None, description="Target MPS number; ignored outside 1-25")


class ProvenanceResponse(BaseModel):
    """Provenance metadata returned with any AI content."""

    source_type: str
    knowledge_tier: str
    has_document_context: bool
    document_context_length: int
    insufficient_internal_documentation: bool
    low_confidence: bool
    degraded_sources: list[str]
    source_document_ids: list[uuid.UUID]

    @classmethod
    def from_metadata(cls, metadata: ProvenanceMetadata) -> "ProvenanceResponse":
        return cls(
            source_type=metadata.source_type.value,
            knowledge_tier=metadata.knowledge_tier.value,
            has_document_context=metadata.has_document_context,
            document_context_length=metadata.document_context_length,
            insufficient_internal_documentation=metadata.insufficient_internal_documentation,
            low_confidence=metadata.low_confidence,
            degraded_sources=list(metadata.degraded_sources),
            source_document_ids=list(metadata.source_document_ids),
        )


class RetrievedChunkResponse(BaseModel):
    """A knowledge base chunk included in the context."""

    chunk_id: uuid.UUID
    document_id: uuid.UUID
    document_title: str
    similarity: float
    content: str


class ContextResponse(BaseModel):
    """Tier-scoped context and its provenance, without a model call."""

    knowledge_tier: str
    policy_text: str
    organization_context: str
    chunks: list[RetrievedChunkResponse]
    advisory_context: str
    metadata: ProvenanceResponse

    @classmethod
    def from_bundle(
        cls,
        bundle: ContextBundle,
        metadata: ProvenanceMetadata,
    ) -> "ContextResponse":
        return cls(
            knowledge_tier=bundle.knowledge_tier.value,
            policy_text=bundle.policy_text,
            organization_context=bundle.organization_context,
            chunks=[
                RetrievedChunkResponse(
                    chunk_id=chunk.chunk_id,
                    document_id=chunk.document_id,
                    document_title=chunk.document_title,
                    similarity=chunk.similarity,
                    content=chunk.content,
                )
                for chunk in bundle.chunks
            ],
            advisory_context=bundle.advisory_context,
            metadata=ProvenanceResponse.from_metadata(metadata),
        )


class GuidanceResponse(BaseModel):
    """Generated guidance with provenance."""

    content: str
    metadata: ProvenanceResponse


# ---------------------------------------------------------------------------
# Embedding backfill schemas
# ---------------------------------------------------------------------------


class BackfillResponse(BaseModel):
    """Counts from one embedding backfill pass."""

    processed: int
    failed: int
    skipped: int
    failed_chunk_ids: list[uuid.UUID]

    @classmethod
    def from_result(cls, result: BackfillResult) -> "BackfillResponse":
        return cls(
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
            failed_chunk_ids=list(result.failed_chunk_ids),
        )


class ErrorResponse(BaseModel):
    """Error body returned for every MaturionError."""

    error_code: str
    message: str
    details: dict = Field(default_factory=dict)
