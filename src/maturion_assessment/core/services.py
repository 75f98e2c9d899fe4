"""Business logic services for the Maturion assessment service.

All services depend on repository and adapter interfaces (not concrete
implementations) and receive dependencies via constructor injection.
No framework code (FastAPI, SQLAlchemy) belongs here.

Key invariants enforced by services:
- Scores are derived, never stored: every call recomputes from responses.
- Responses scored against a stored domain must reference its criteria.
- Retrieval degradation never fails a guidance request; an unreachable
  language model does.
- Embedding backfill retries each chunk a bounded number of times.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field

from maturion_assessment.core.interfaces import (
    ICriteriaStore,
    IDocumentChunkStore,
    IEmbeddingClient,
    ILanguageModelClient,
    PendingChunk,
)
from maturion_assessment.core.maturity_levels import MaturityLevel
from maturion_assessment.core.prompt import compose_prompt
from maturion_assessment.core.retrieval import (
    ContextRequest,
    ProvenanceMetadata,
    RetrievalRouter,
    RoutedContext,
    fallback_context,
)
from maturion_assessment.core.scoring import (
    AssessmentProgress,
    CriteriaScore,
    DomainScore,
    MaturityScorer,
    parse_criteria_scores,
)
from maturion_assessment.errors import (
    CollaboratorUnavailableError,
    NotFoundError,
    ScoringValidationError,
)
from maturion_assessment.observability import get_logger

logger = get_logger(__name__)

# Embedding model input is truncated to this many characters
EMBEDDING_INPUT_MAX_CHARS: int = 8000

DEFAULT_BACKFILL_BATCH_SIZE: int = 100
DEFAULT_BACKFILL_MAX_ATTEMPTS: int = 5
DEFAULT_BACKFILL_BASE_DELAY_SECONDS: float = 1.0
DEFAULT_BACKFILL_MAX_DELAY_SECONDS: float = 30.0


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainScoringInput:
    """Raw responses for one domain, as received from the API layer."""

    domain_id: str
    domain_name: str
    target_level: MaturityLevel | str
    criteria_scores: Sequence[Mapping[str, object]]


@dataclass(frozen=True)
class AssessmentScore:
    """Scored domains of an assessment together with the overall progress."""

    domains: tuple[DomainScore, ...]
    progress: AssessmentProgress


class AssessmentScoringService:
    """Score domains and roll them up into assessment progress.

    Wraps the pure MaturityScorer with input parsing, criteria-membership
    checks against the stored domain hierarchy, and logging.
    """

    def __init__(
        self,
        scorer: MaturityScorer,
        criteria_store: ICriteriaStore | None = None,
    ) -> None:
        """Initialise with injected dependencies.

        Args:
            scorer: Domain maturity scoring engine.
            criteria_store: Domain hierarchy lookup. Only required for
                score_stored_domain.
        """
        self._scorer = scorer
        self._criteria = criteria_store

    def score_domain(self, domain: DomainScoringInput) -> DomainScore:
        """Parse raw responses and score one domain.

        Args:
            domain: Raw domain responses.

        Returns:
            DomainScore for the domain.

        Raises:
            ScoringValidationError: If any response is malformed.
        """
        criteria_scores = parse_criteria_scores(domain.criteria_scores)
        return self._scorer.score_domain(
            domain_id=domain.domain_id,
            domain_name=domain.domain_name,
            criteria_scores=criteria_scores,
            target_level=domain.target_level,
        )

    def score_assessment(self, domains: Sequence[DomainScoringInput]) -> AssessmentScore:
        """Score several domains and compute overall progress.

        Validation problems from every domain are collected before failing,
        each prefixed with the domain identifier.

        Args:
            domains: Raw responses per domain.

        Returns:
            AssessmentScore with per-domain results and progress.

        Raises:
            ScoringValidationError: If no domains are given or any domain is invalid.
        """
        if not domains:
            raise ScoringValidationError(["No domains provided"])

        scored: list[DomainScore] = []
        errors: list[str] = []
        for domain in domains:
            try:
                scored.append(self.score_domain(domain))
            except ScoringValidationError as exc:
                errors.extend(f"Domain {domain.domain_id}: {error}" for error in exc.errors)

        if errors:
            raise ScoringValidationError(errors)

        progress = self._scorer.calculate_assessment_progress(scored)

        logger.info(
            "Assessment scored",
            domain_count=len(scored),
            total_criteria=progress.total_criteria,
            completion_percentage=progress.completion_percentage,
            overall_maturity_level=progress.overall_maturity_level.value,
        )

        return AssessmentScore(domains=tuple(scored), progress=progress)

    async def score_stored_domain(
        self,
        organization_id: uuid.UUID,
        domain_id: uuid.UUID,
        target_level: MaturityLevel | str,
        raw_scores: Sequence[Mapping[str, object]],
    ) -> DomainScore:
        """Score responses against a domain stored for the organisation.

        Args:
            organization_id: Requesting organisation.
            domain_id: Stored domain UUID.
            target_level: The domain's target maturity level.
            raw_scores: Raw criteria responses.

        Returns:
            DomainScore for the stored domain.

        Raises:
            NotFoundError: If the domain does not exist for the organisation.
            ScoringValidationError: If a response is malformed or references a
                criterion outside the domain.
        """
        if self._criteria is None:
            raise RuntimeError("AssessmentScoringService was built without a criteria store")

        domain = await self._criteria.get_domain(domain_id, organization_id)
        if domain is None:
            raise NotFoundError(
                message=f"Domain {domain_id} not found.",
                details={"domain_id": str(domain_id), "organization_id": str(organization_id)},
            )

        criteria_scores = parse_criteria_scores(raw_scores)
        unknown = [
            f"Criteria score {index}: criterion {score.criteria_id!r} does not belong to domain {domain.name!r}"
            for index, score in enumerate(criteria_scores, start=1)
            if score.criteria_id not in domain.criteria_ids
        ]
        if unknown:
            raise ScoringValidationError(unknown)

        result = self._scorer.score_domain(
            domain_id=str(domain.domain_id),
            domain_name=domain.name,
            criteria_scores=criteria_scores,
            target_level=target_level,
        )

        logger.info(
            "Stored domain scored",
            organization_id=str(organization_id),
            domain_id=str(domain_id),
            calculated_level=result.calculated_level.value,
            meets_threshold=result.meets_threshold,
            penalty_applied=result.penalty_applied,
        )
        return result


# ---------------------------------------------------------------------------
# Guidance generation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GuidanceResult:
    """Generated guidance together with the provenance of its context."""

    content: str
    metadata: ProvenanceMetadata


class GuidanceService:
    """Generate AI guidance from tier-scoped context.

    The router decides what context the request may see; this service turns
    that context into a prompt and calls the language model.
    """

    def __init__(
        self,
        router: RetrievalRouter,
        language_model: ILanguageModelClient,
    ) -> None:
        """Initialise with injected dependencies.

        Args:
            router: Knowledge-tier retrieval router.
            language_model: Chat-completion collaborator.
        """
        self._router = router
        self._model = language_model

    async def build_context(self, request: ContextRequest) -> RoutedContext:
        """Build tier-scoped context, falling back to an empty low-confidence bundle.

        Args:
            request: The AI request.

        Returns:
            RoutedContext; never raises for retrieval failures.
        """
        try:
            return await self._router.build_context(request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            tier = self._router.classify(request)
            logger.error(
                "Context build failed, continuing with empty context",
                organization_id=str(request.organization_id),
                knowledge_tier=tier.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return fallback_context(request, tier)

    async def generate_guidance(self, request: ContextRequest) -> GuidanceResult:
        """Generate guidance for an AI request.

        Args:
            request: The AI request.

        Returns:
            GuidanceResult with the model's reply and provenance metadata.

        Raises:
            CollaboratorUnavailableError: If the language model cannot be reached.
        """
        routed = await self.build_context(request)
        prompt = compose_prompt(routed.bundle)

        try:
            content = await self._model.complete(prompt.system_prompt, prompt.user_prompt)
        except CollaboratorUnavailableError:
            raise
        except Exception as exc:
            logger.error(
                "Language model call failed",
                organization_id=str(request.organization_id),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise CollaboratorUnavailableError(
                collaborator="language_model",
                message="The language model is unavailable. Please try again later.",
            ) from exc

        logger.info(
            "Guidance generated",
            organization_id=str(request.organization_id),
            knowledge_tier=routed.metadata.knowledge_tier.value,
            source_type=routed.metadata.source_type.value,
            has_document_context=routed.metadata.has_document_context,
            low_confidence=routed.metadata.low_confidence,
            response_length=len(content),
        )
        return GuidanceResult(content=content, metadata=routed.metadata)


# ---------------------------------------------------------------------------
# Embedding backfill
# ---------------------------------------------------------------------------


@dataclass
class BackfillResult:
    """Counts from one backfill pass.

    Attributes:
        processed: Chunks that received an embedding.
        failed: Chunks still without an embedding after all attempts.
        skipped: Chunks with empty content.
        failed_chunk_ids: Identifiers of the failed chunks.
    """

    processed: int = 0
    failed: int = 0
    skipped: int = 0
    failed_chunk_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.failed + self.skipped


class EmbeddingBackfillService:
    """Generate embeddings for chunks that are missing one.

    Each chunk is retried with exponential backoff up to a maximum number of
    attempts. A chunk that exhausts its attempts is counted as failed and the
    pass moves on; it is picked up again by the next pass.
    """

    def __init__(
        self,
        chunk_store: IDocumentChunkStore,
        embedding_client: IEmbeddingClient,
        batch_size: int = DEFAULT_BACKFILL_BATCH_SIZE,
        max_attempts: int = DEFAULT_BACKFILL_MAX_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BACKFILL_BASE_DELAY_SECONDS,
        max_delay_seconds: float = DEFAULT_BACKFILL_MAX_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialise with injected dependencies.

        Args:
            chunk_store: Chunk persistence.
            embedding_client: Embedding collaborator.
            batch_size: Maximum chunks processed per pass.
            max_attempts: Attempts per chunk before giving up.
            base_delay_seconds: Delay before the first retry.
            max_delay_seconds: Upper bound on any single delay.
            sleep: Awaitable sleep, replaceable in tests.
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self._chunks = chunk_store
        self._embedder = embedding_client
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._base_delay = base_delay_seconds
        self._max_delay = max_delay_seconds
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Return the delay after a failed attempt (1-based), capped at max delay."""
        return min(self._base_delay * 2 ** (attempt - 1), self._max_delay)

    async def run_batch(self, organization_id: uuid.UUID) -> BackfillResult:
        """Embed one batch of the organisation's chunks that lack an embedding.

        Args:
            organization_id: Organisation whose chunks are processed.

        Returns:
            BackfillResult with processed, failed and skipped counts.
        """
        pending = await self._chunks.list_chunks_missing_embeddings(
            organization_id, self._batch_size
        )
        result = BackfillResult()

        logger.info(
            "Embedding backfill started",
            organization_id=str(organization_id),
            pending_chunks=len(pending),
        )

        for chunk in pending:
            if not chunk.content or not chunk.content.strip():
                result.skipped += 1
                continue

            if await self._embed_with_retry(chunk):
                result.processed += 1
            else:
                result.failed += 1
                result.failed_chunk_ids.append(chunk.chunk_id)

        logger.info(
            "Embedding backfill finished",
            organization_id=str(organization_id),
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    async def _embed_with_retry(self, chunk: PendingChunk) -> bool:
        """Embed and save one chunk, retrying with exponential backoff.

        Returns:
            True once the embedding is saved, False after max_attempts failures.
        """
        text = chunk.content[:EMBEDDING_INPUT_MAX_CHARS]

        for attempt in range(1, self._max_attempts + 1):
            try:
                embedding = await self._embedder.embed(text)
                await self._chunks.save_embedding(chunk.chunk_id, embedding)
                return True
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if attempt == self._max_attempts:
                    logger.error(
                        "Embedding failed after max attempts",
                        chunk_id=str(chunk.chunk_id),
                        attempts=attempt,
                        error=str(exc),
                    )
                    return False

                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Embedding attempt failed, retrying",
                    chunk_id=str(chunk.chunk_id),
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    retry_in_seconds=delay,
                    error=str(exc),
                )
                await self._sleep(delay)

        return False
