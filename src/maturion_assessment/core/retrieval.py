"""Knowledge-tier retrieval router.

Classifies an AI request into a knowledge tier and gathers only the context
that tier is allowed to use:

    internal_secure         — governance policy text, organisation profile and
                              semantically ranked organisation-scoped chunks
    external_awareness      — verified, recent, profile-matched insights in a
                              fenced ADVISORY ONLY block
    organizational_context  — organisation profile fields
    general                 — nothing

Sub-queries run concurrently, each under its own timeout. A failing or slow
sub-query is logged and recorded in ``degraded_sources``; it never aborts the
request. Absence of data is a value (empty tuple), never an exception.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from maturion_assessment.core.interfaces import (
    ExternalInsight,
    IDocumentRetriever,
    IInsightStore,
    IOrganizationRepository,
    IPolicyRepository,
    OrganizationProfile,
    RetrievedChunk,
)
from maturion_assessment.core.knowledge_tiers import (
    TIER_SOURCE_TYPES,
    KnowledgeTier,
    SourceType,
    TierRequest,
    classify_request,
)
from maturion_assessment.core.prompt import (
    extract_mps_number,
    render_advisory_block,
    render_document_context,
    render_organization_context,
    sanitize_input,
    validate_mps_number,
)
from maturion_assessment.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TOP_N: int = 25
DEFAULT_QUERY_LIMIT: int = 50
DEFAULT_SIMILARITY_THRESHOLD: float = 0.2
DEFAULT_QUERY_TIMEOUT_SECONDS: float = 8.0
DEFAULT_MAX_QUERIES: int = 10
DEFAULT_INSIGHT_WINDOW_DAYS: int = 30
DEFAULT_INSIGHT_FETCH_LIMIT: int = 50
DEFAULT_POLICY_TITLE: str = "AI Behavior & Knowledge Source Policy"

# Threat sensitivity at which external awareness retrieval is skipped entirely
LOWEST_THREAT_SENSITIVITY: str = "basic"

GLOBAL_TAG: str = "global"

POLICY_SOURCE: str = "policy"
PROFILE_SOURCE: str = "organization_profile"
INSIGHTS_SOURCE: str = "external_insights"


@dataclass(frozen=True)
class ContextRequest:
    """An AI request awaiting context.

    Attributes:
        prompt_text: The user's natural-language request.
        organization_id: Organisation whose content may be consulted.
        free_text_context: Free-text context from the calling screen.
        current_domain: Domain the request is scoped to, if any.
        allow_external_context: Whether advisory threat intelligence may be fetched.
        mps_number: Optional MPS number (1-25) to target retrieval at.
    """

    prompt_text: str
    organization_id: uuid.UUID
    free_text_context: str = ""
    current_domain: str | None = None
    allow_external_context: bool = False
    mps_number: int | None = None


@dataclass(frozen=True)
class ContextBundle:
    """Context gathered for one request, kept in separate per-source fields."""

    knowledge_tier: KnowledgeTier
    prompt_text: str
    free_text_context: str = ""
    policy_text: str = ""
    organization_context: str = ""
    chunks: tuple[RetrievedChunk, ...] = ()
    advisory_context: str = ""

    @property
    def document_context(self) -> str:
        """Retrieved chunks rendered as knowledge base excerpts."""
        return render_document_context(self.chunks)


@dataclass(frozen=True)
class ProvenanceMetadata:
    """Provenance returned alongside any generated content.

    Attributes:
        source_type: internal or external.
        knowledge_tier: Tier the request was classified into.
        has_document_context: Whether any internal chunk was retrieved.
        document_context_length: Character length of the rendered chunks.
        insufficient_internal_documentation: Internal tier found zero chunks.
        low_confidence: The source the tier depends on failed (every document
            search, the organisation profile, or the insight store), so the
            answer rests on an empty or minimal context.
        degraded_sources: Names of sub-queries that failed or timed out.
        source_document_ids: Distinct source documents of the retrieved chunks.
    """

    source_type: SourceType
    knowledge_tier: KnowledgeTier
    has_document_context: bool
    document_context_length: int
    insufficient_internal_documentation: bool = False
    low_confidence: bool = False
    degraded_sources: tuple[str, ...] = ()
    source_document_ids: tuple[uuid.UUID, ...] = ()


@dataclass(frozen=True)
class RoutedContext:
    """A context bundle together with its provenance metadata."""

    bundle: ContextBundle
    metadata: ProvenanceMetadata


@dataclass
class _Degradation:
    """Per-request record of sub-queries that failed. Never shared between requests."""

    sources: list[str] = field(default_factory=list)

    def record(self, source: str) -> None:
        self.sources.append(source)

    def failed(self, source: str) -> bool:
        return source in self.sources


def build_search_queries(
    prompt_text: str,
    current_domain: str | None,
    mps_number: int | None,
    max_queries: int = DEFAULT_MAX_QUERIES,
) -> list[str]:
    """Build the prompt query plus domain- and MPS-specific auxiliary queries.

    Args:
        prompt_text: Sanitised user prompt.
        current_domain: Domain name, if the request is domain-scoped.
        mps_number: Targeted MPS number, if any.
        max_queries: Cap on the number of queries issued.

    Returns:
        Distinct, non-empty queries in priority order.
    """
    queries: list[str] = [prompt_text, f"{prompt_text} requirements"]

    if mps_number is not None:
        queries.extend(
            [
                f"MPS {mps_number}",
                f"{prompt_text} MPS {mps_number}",
                f"{current_domain} MPS {mps_number}" if current_domain else f"MPS {mps_number} requirements",
            ]
        )

    if current_domain:
        queries.extend([f"{current_domain} {prompt_text}", f"{current_domain} requirements"])

    distinct: list[str] = []
    seen: set[str] = set()
    for query in queries:
        normalised = query.strip()
        if normalised and normalised.lower() not in seen:
            seen.add(normalised.lower())
            distinct.append(normalised)
    return distinct[:max_queries]


def merge_chunks(
    result_sets: Sequence[Sequence[RetrievedChunk]],
    top_n: int = DEFAULT_TOP_N,
) -> list[RetrievedChunk]:
    """Merge sub-query results: dedupe by chunk id, sort by similarity, cap at top_n.

    When a chunk appears in several result sets the occurrence with the
    highest similarity is kept. Ties keep first-seen order.

    Args:
        result_sets: Ranked results of each sub-query.
        top_n: Maximum number of chunks returned.

    Returns:
        Distinct chunks in descending similarity order.
    """
    best: dict[uuid.UUID, RetrievedChunk] = {}
    for results in result_sets:
        for chunk in results:
            current = best.get(chunk.chunk_id)
            if current is None or chunk.similarity > current.similarity:
                best[chunk.chunk_id] = chunk
    return sorted(best.values(), key=lambda chunk: chunk.similarity, reverse=True)[:top_n]


def filter_relevant_insights(
    insights: Sequence[ExternalInsight],
    profile: OrganizationProfile,
    published_after: datetime,
) -> list[ExternalInsight]:
    """Keep verified, recent insights matching the organisation's risk profile.

    An insight matches when it shares an industry tag, names the operating
    region, shares a threat tag with the risk concerns, or is tagged Global.

    Args:
        insights: Candidate insights.
        profile: Organisation risk profile.
        published_after: Oldest publication time allowed.

    Returns:
        Matching insights in input order.
    """
    industries = {tag.lower() for tag in profile.industry_tags}
    concerns = {concern.lower() for concern in profile.risk_concerns}
    region = (profile.region_operating or "").lower()

    relevant: list[ExternalInsight] = []
    for insight in insights:
        if not insight.is_verified or _as_utc(insight.published_at) < published_after:
            continue

        industry_tags = {tag.lower() for tag in insight.industry_tags}
        region_tags = {tag.lower() for tag in insight.region_tags}
        threat_tags = {tag.lower() for tag in insight.threat_tags}

        if (
            GLOBAL_TAG in industry_tags
            or GLOBAL_TAG in region_tags
            or industries & industry_tags
            or (region and region in region_tags)
            or concerns & threat_tags
        ):
            relevant.append(insight)
    return relevant


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


class RetrievalRouter:
    """Classify AI requests and gather tier-appropriate context.

    Holds only its collaborators and configuration; all per-request state
    lives on the stack, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        document_retriever: IDocumentRetriever,
        policy_repository: IPolicyRepository,
        organization_repository: IOrganizationRepository,
        insight_store: IInsightStore,
        top_n: int = DEFAULT_TOP_N,
        query_limit: int = DEFAULT_QUERY_LIMIT,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        max_queries: int = DEFAULT_MAX_QUERIES,
        insight_window_days: int = DEFAULT_INSIGHT_WINDOW_DAYS,
        insight_fetch_limit: int = DEFAULT_INSIGHT_FETCH_LIMIT,
        policy_title: str = DEFAULT_POLICY_TITLE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialise the router with its collaborators.

        Args:
            document_retriever: Semantic search over organisation chunks.
            policy_repository: AI governance policy lookup.
            organization_repository: Organisation profile lookup.
            insight_store: Verified external insight records.
            top_n: Maximum chunks kept after merging.
            query_limit: Results requested per sub-query.
            similarity_threshold: Minimum similarity per sub-query.
            query_timeout_seconds: Timeout applied to each sub-query.
            max_queries: Cap on document sub-queries per request.
            insight_window_days: Age limit for external insights.
            insight_fetch_limit: Insights fetched before profile filtering.
            policy_title: Title of the governance policy document.
            clock: Returns the current UTC time. Defaults to datetime.now(timezone.utc).
        """
        self._retriever = document_retriever
        self._policies = policy_repository
        self._organizations = organization_repository
        self._insights = insight_store
        self._top_n = top_n
        self._query_limit = query_limit
        self._similarity_threshold = similarity_threshold
        self._timeout = query_timeout_seconds
        self._max_queries = max_queries
        self._insight_window = timedelta(days=insight_window_days)
        self._insight_fetch_limit = insight_fetch_limit
        self._policy_title = policy_title
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def classify(self, request: ContextRequest) -> KnowledgeTier:
        """Classify a request without gathering any context."""
        return classify_request(
            TierRequest(
                prompt_text=sanitize_input(request.prompt_text),
                free_text_context=sanitize_input(request.free_text_context),
                current_domain=request.current_domain,
            )
        )

    async def build_context(self, request: ContextRequest) -> RoutedContext:
        """Classify the request and gather the context its tier allows.

        Args:
            request: The AI request.

        Returns:
            RoutedContext with the bundle and provenance metadata.
        """
        prompt_text = sanitize_input(request.prompt_text)
        free_text_context = sanitize_input(request.free_text_context)
        tier = classify_request(
            TierRequest(
                prompt_text=prompt_text,
                free_text_context=free_text_context,
                current_domain=request.current_domain,
            )
        )
        degradation = _Degradation()

        logger.info(
            "Knowledge tier classified",
            organization_id=str(request.organization_id),
            knowledge_tier=tier.value,
            current_domain=request.current_domain,
        )

        low_confidence = False
        if tier is KnowledgeTier.INTERNAL_SECURE:
            bundle, low_confidence = await self._build_internal(
                request, prompt_text, free_text_context, degradation
            )
        elif tier is KnowledgeTier.EXTERNAL_AWARENESS:
            bundle, low_confidence = await self._build_external(
                request, prompt_text, free_text_context, degradation
            )
        elif tier is KnowledgeTier.ORGANIZATIONAL_CONTEXT:
            bundle, low_confidence = await self._build_organizational(
                request, prompt_text, free_text_context, degradation
            )
        else:
            bundle = ContextBundle(
                knowledge_tier=tier,
                prompt_text=prompt_text,
                free_text_context=free_text_context,
            )

        metadata = _build_metadata(bundle, degradation, low_confidence)

        logger.info(
            "Context assembled",
            organization_id=str(request.organization_id),
            knowledge_tier=tier.value,
            chunk_count=len(bundle.chunks),
            document_context_length=metadata.document_context_length,
            insufficient_internal_documentation=metadata.insufficient_internal_documentation,
            low_confidence=metadata.low_confidence,
            degraded_sources=list(metadata.degraded_sources),
        )
        return RoutedContext(bundle=bundle, metadata=metadata)

    # ------------------------------------------------------------------
    # Tier builders
    # ------------------------------------------------------------------

    async def _build_internal(
        self,
        request: ContextRequest,
        prompt_text: str,
        free_text_context: str,
        degradation: _Degradation,
    ) -> tuple[ContextBundle, bool]:
        """Gather policy, profile and ranked chunks for an internal_secure request.

        Returns:
            The bundle, and True when every document sub-query failed.
        """
        mps_number = validate_mps_number(request.mps_number) or extract_mps_number(prompt_text)
        queries = build_search_queries(
            prompt_text,
            request.current_domain,
            mps_number,
            max_queries=self._max_queries,
        )
        organization_id = request.organization_id

        search_tasks = [
            self._guarded(
                f"document_search:{query}",
                lambda query=query: self._retriever.search(
                    query=query,
                    organization_id=organization_id,
                    limit=self._query_limit,
                    threshold=self._similarity_threshold,
                ),
                None,
                degradation,
            )
            for query in queries
        ]

        policy_text, profile, *search_results = await asyncio.gather(
            self._guarded(
                POLICY_SOURCE,
                lambda: self._policies.get_policy_text(organization_id, self._policy_title),
                "",
                degradation,
            ),
            self._guarded(
                PROFILE_SOURCE,
                lambda: self._organizations.get_profile(organization_id),
                None,
                degradation,
            ),
            *search_tasks,
        )

        succeeded = [results for results in search_results if results is not None]
        chunks = merge_chunks(succeeded, top_n=self._top_n)
        all_searches_failed = bool(queries) and not succeeded

        if not chunks:
            logger.warning(
                "Insufficient internal documentation for request",
                organization_id=str(organization_id),
                query_count=len(queries),
                failed_query_count=len(search_results) - len(succeeded),
            )

        bundle = ContextBundle(
            knowledge_tier=KnowledgeTier.INTERNAL_SECURE,
            prompt_text=prompt_text,
            free_text_context=free_text_context,
            policy_text=policy_text or "",
            organization_context=render_organization_context(profile) if profile else "",
            chunks=tuple(chunks),
        )
        return bundle, all_searches_failed

    async def _build_external(
        self,
        request: ContextRequest,
        prompt_text: str,
        free_text_context: str,
        degradation: _Degradation,
    ) -> tuple[ContextBundle, bool]:
        """Gather the advisory block for an external_awareness request.

        Returns:
            The bundle, and True when the profile or insight lookup failed.
        """
        empty = ContextBundle(
            knowledge_tier=KnowledgeTier.EXTERNAL_AWARENESS,
            prompt_text=prompt_text,
            free_text_context=free_text_context,
        )

        if not request.allow_external_context:
            logger.info(
                "External context not allowed for request",
                organization_id=str(request.organization_id),
            )
            return empty, False

        profile = await self._guarded(
            PROFILE_SOURCE,
            lambda: self._organizations.get_profile(request.organization_id),
            None,
            degradation,
        )
        if profile is None:
            return empty, degradation.failed(PROFILE_SOURCE)

        if (profile.threat_sensitivity_level or "").strip().lower() == LOWEST_THREAT_SENSITIVITY:
            logger.info(
                "External awareness skipped for lowest threat sensitivity",
                organization_id=str(request.organization_id),
            )
            return empty, False

        published_after = self._clock() - self._insight_window
        insights = await self._guarded(
            INSIGHTS_SOURCE,
            lambda: self._insights.list_verified_insights(
                published_after=published_after,
                limit=self._insight_fetch_limit,
            ),
            [],
            degradation,
        )
        relevant = filter_relevant_insights(insights, profile, published_after)

        bundle = ContextBundle(
            knowledge_tier=KnowledgeTier.EXTERNAL_AWARENESS,
            prompt_text=prompt_text,
            free_text_context=free_text_context,
            advisory_context=render_advisory_block(profile, relevant),
        )
        return bundle, degradation.failed(INSIGHTS_SOURCE)

    async def _build_organizational(
        self,
        request: ContextRequest,
        prompt_text: str,
        free_text_context: str,
        degradation: _Degradation,
    ) -> tuple[ContextBundle, bool]:
        """Attach the organisation profile for an organizational_context request.

        Returns:
            The bundle, and True when the profile lookup failed.
        """
        profile = await self._guarded(
            PROFILE_SOURCE,
            lambda: self._organizations.get_profile(request.organization_id),
            None,
            degradation,
        )
        bundle = ContextBundle(
            knowledge_tier=KnowledgeTier.ORGANIZATIONAL_CONTEXT,
            prompt_text=prompt_text,
            free_text_context=free_text_context,
            organization_context=render_organization_context(profile) if profile else "",
        )
        return bundle, degradation.failed(PROFILE_SOURCE)

    async def _guarded(
        self,
        source: str,
        call: Callable[[], Awaitable[T]],
        default: T,
        degradation: _Degradation,
    ) -> T:
        """Run one sub-query under the per-query timeout, degrading on failure.

        Cancellation of the caller propagates; every other failure is logged,
        recorded, and replaced by ``default``.
        """
        try:
            return await asyncio.wait_for(call(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Context sub-query timed out", source=source, timeout_seconds=self._timeout)
        except Exception as exc:
            logger.warning(
                "Context sub-query failed",
                source=source,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        degradation.record(source)
        return default


def _build_metadata(
    bundle: ContextBundle,
    degradation: _Degradation,
    low_confidence: bool,
) -> ProvenanceMetadata:
    """Derive provenance metadata from a finished bundle."""
    document_context = bundle.document_context
    source_document_ids = tuple(dict.fromkeys(chunk.document_id for chunk in bundle.chunks))
    insufficient = bundle.knowledge_tier is KnowledgeTier.INTERNAL_SECURE and not bundle.chunks

    return ProvenanceMetadata(
        source_type=TIER_SOURCE_TYPES[bundle.knowledge_tier],
        knowledge_tier=bundle.knowledge_tier,
        has_document_context=bool(bundle.chunks),
        document_context_length=len(document_context),
        insufficient_internal_documentation=insufficient,
        low_confidence=low_confidence,
        degraded_sources=tuple(degradation.sources),
        source_document_ids=source_document_ids,
    )


def fallback_context(request: ContextRequest, tier: KnowledgeTier) -> RoutedContext:
    """Minimal low-confidence context used when context building fails outright.

    Args:
        request: The original AI request.
        tier: The tier the request was classified into.

    Returns:
        RoutedContext with an empty bundle flagged low_confidence.
    """
    bundle = ContextBundle(
        knowledge_tier=tier,
        prompt_text=sanitize_input(request.prompt_text),
        free_text_context=sanitize_input(request.free_text_context),
    )
    return RoutedContext(
        bundle=bundle,
        metadata=ProvenanceMetadata(
            source_type=TIER_SOURCE_TYPES[tier],
            knowledge_tier=tier,
            has_document_context=False,
            document_context_length=0,
            insufficient_internal_documentation=tier is KnowledgeTier.INTERNAL_SECURE,
            low_confidence=True,
            degraded_sources=("context_router",),
        ),
    )
