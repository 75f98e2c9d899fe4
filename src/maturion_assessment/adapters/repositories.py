"""SQLAlchemy repository implementations for the Maturion assessment service.

Each repository implements one interface defined in core/interfaces.py and
translates ORM rows into the core's value objects. Every organisation-owned
read is filtered by organization_id.
"""

import asyncio
import math
import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from maturion_assessment.core.interfaces import (
    DomainRecord,
    EmbeddedChunk,
    ExternalInsight,
    IDocumentChunkStore,
    IEmbeddingClient,
    OrganizationProfile,
    PendingChunk,
    RetrievedChunk,
)
from maturion_assessment.core.models import (
    AIDocument,
    AIDocumentChunk,
    Criterion,
    Domain,
    ExternalInsight as ExternalInsightRow,
    MaturityPracticeStatement,
    Organization,
)
from maturion_assessment.observability import get_logger

logger = get_logger(__name__)


class SqlCriteriaStore:
    """Repository for the domain -> MPS -> criteria hierarchy."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialise with async database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get_domain(
        self,
        domain_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> DomainRecord | None:
        """Retrieve a domain and the ids of every criterion beneath its MPSs.

        Args:
            domain_id: Domain UUID.
            organization_id: Requesting organisation.

        Returns:
            DomainRecord or None if not found for the organisation.
        """
        result = await self.session.execute(
            select(Domain).where(
                Domain.id == domain_id,
                Domain.organization_id == organization_id,
            )
        )
        domain = result.scalar_one_or_none()
        if domain is None:
            return None

        criteria_result = await self.session.execute(
            select(Criterion.id)
            .join(MaturityPracticeStatement, Criterion.mps_id == MaturityPracticeStatement.id)
            .where(
                MaturityPracticeStatement.domain_id == domain_id,
                Criterion.organization_id == organization_id,
            )
        )
        criteria_ids = frozenset(str(criterion_id) for criterion_id in criteria_result.scalars())

        return DomainRecord(
            domain_id=domain.id,
            organization_id=domain.organization_id,
            name=domain.name,
            criteria_ids=criteria_ids,
        )


class SqlDocumentChunkStore:
    """Repository for ingested document chunks and their embeddings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialise with async database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def list_chunks_missing_embeddings(
        self,
        organization_id: uuid.UUID,
        limit: int,
    ) -> list[PendingChunk]:
        """List chunks of the organisation without an embedding, oldest first.

        Args:
            organization_id: Owning organisation.
            limit: Maximum number of chunks.

        Returns:
            PendingChunk list.
        """
        result = await self.session.execute(
            select(AIDocumentChunk.id, AIDocumentChunk.content)
            .where(
                AIDocumentChunk.organization_id == organization_id,
                AIDocumentChunk.embedding.is_(None),
            )
            .order_by(AIDocumentChunk.created_at)
            .limit(limit)
        )
        return [PendingChunk(chunk_id=row.id, content=row.content or "") for row in result]

    async def save_embedding(
        self,
        chunk_id: uuid.UUID,
        embedding: Sequence[float],
    ) -> None:
        """Store an embedding vector on a chunk.

        Args:
            chunk_id: Chunk UUID.
            embedding: Embedding vector.
        """
        await self.session.execute(
            update(AIDocumentChunk)
            .where(AIDocumentChunk.id == chunk_id)
            .values(embedding=[float(value) for value in embedding])
        )
        await self.session.flush()

    async def list_embedded_chunks(self, organization_id: uuid.UUID) -> list[EmbeddedChunk]:
        """List every embedded chunk of the organisation with its document title.

        Args:
            organization_id: Owning organisation.

        Returns:
            EmbeddedChunk list.
        """
        result = await self.session.execute(
            select(
                AIDocumentChunk.id,
                AIDocumentChunk.document_id,
                AIDocumentChunk.content,
                AIDocumentChunk.embedding,
                AIDocument.title,
            )
            .join(AIDocument, AIDocumentChunk.document_id == AIDocument.id)
            .where(
                AIDocumentChunk.organization_id == organization_id,
                AIDocumentChunk.embedding.is_not(None),
            )
        )
        return [
            EmbeddedChunk(
                chunk_id=row.id,
                document_id=row.document_id,
                document_title=row.title,
                content=row.content,
                embedding=tuple(row.embedding),
            )
            for row in result
        ]


class SqlPolicyRepository:
    """Repository for the organisation's AI governance policy document."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialise with async database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get_policy_text(self, organization_id: uuid.UUID, title: str) -> str:
        """Concatenate the chunks of the completed policy document with the given title.

        Args:
            organization_id: Owning organisation.
            title: Policy document title.

        Returns:
            Policy text, or an empty string when no such document exists.
        """
        result = await self.session.execute(
            select(AIDocumentChunk.content)
            .join(AIDocument, AIDocumentChunk.document_id == AIDocument.id)
            .where(
                AIDocument.organization_id == organization_id,
                AIDocument.title == title,
                AIDocument.processing_status == "completed",
            )
            .order_by(AIDocumentChunk.chunk_index)
        )
        return "\n\n".join(content for content in result.scalars() if content)


class SqlOrganizationRepository:
    """Repository for organisation profiles."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialise with async database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get_profile(self, organization_id: uuid.UUID) -> OrganizationProfile | None:
        """Retrieve an organisation profile.

        Args:
            organization_id: Organisation UUID.

        Returns:
            OrganizationProfile or None if the organisation is unknown.
        """
        result = await self.session.execute(
            select(Organization).where(Organization.id == organization_id)
        )
        organization = result.scalar_one_or_none()
        if organization is None:
            return None

        return OrganizationProfile(
            organization_id=organization.id,
            name=organization.name,
            description=organization.description,
            primary_website_url=organization.primary_website_url,
            industry_tags=tuple(organization.industry_tags or ()),
            region_operating=organization.region_operating,
            risk_concerns=tuple(organization.risk_concerns or ()),
            compliance_commitments=tuple(organization.compliance_commitments or ()),
            threat_sensitivity_level=organization.threat_sensitivity_level or "Basic",
            organization_size=organization.organization_size,
            departments=tuple(organization.departments or ()),
        )


class SqlInsightStore:
    """Repository for verified external insights."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialise with async database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def list_verified_insights(
        self,
        published_after: datetime,
        limit: int,
    ) -> list[ExternalInsight]:
        """List verified insights published after the cutoff, newest first.

        Args:
            published_after: Oldest publication time returned.
            limit: Maximum number of insights.

        Returns:
            ExternalInsight list.
        """
        result = await self.session.execute(
            select(ExternalInsightRow)
            .where(
                ExternalInsightRow.is_verified.is_(True),
                ExternalInsightRow.published_at >= published_after,
            )
            .order_by(ExternalInsightRow.published_at.desc())
            .limit(limit)
        )
        return [
            ExternalInsight(
                insight_id=row.id,
                title=row.title,
                summary=row.summary,
                risk_level=row.risk_level,
                published_at=row.published_at,
                source_type=row.source_type,
                is_verified=row.is_verified,
                industry_tags=tuple(row.industry_tags or ()),
                region_tags=tuple(row.region_tags or ()),
                threat_tags=tuple(row.threat_tags or ()),
            )
            for row in result.scalars()
        ]


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors; 0.0 for mismatched or zero vectors."""
    if len(vec_a) != len(vec_b):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


class SemanticDocumentRetriever:
    """Rank an organisation's embedded chunks by cosine similarity to a query.

    Build one instance per request. The organisation's embedded chunks are
    loaded once, on the first search, and every later search of the same
    instance ranks its query against that in-memory candidate set. The load
    is serialised by a lock so concurrent searches never issue a second one.
    """

    def __init__(
        self,
        chunk_store: IDocumentChunkStore,
        embedding_client: IEmbeddingClient,
    ) -> None:
        """Initialise with injected dependencies.

        Args:
            chunk_store: Source of embedded chunks.
            embedding_client: Embeds the search query.
        """
        self._chunks = chunk_store
        self._embedder = embedding_client
        self._candidates: dict[uuid.UUID, list[EmbeddedChunk]] = {}
        self._load_lock = asyncio.Lock()

    async def _load_candidates(self, organization_id: uuid.UUID) -> list[EmbeddedChunk]:
        """Return the organisation's embedded chunks, loading them on first use."""
        async with self._load_lock:
            if organization_id not in self._candidates:
                self._candidates[organization_id] = await self._chunks.list_embedded_chunks(
                    organization_id
                )
                logger.debug(
                    "Embedded chunks loaded",
                    organization_id=str(organization_id),
                    candidate_count=len(self._candidates[organization_id]),
                )
            return self._candidates[organization_id]

    async def search(
        self,
        query: str,
        organization_id: uuid.UUID,
        limit: int,
        threshold: float,
    ) -> list[RetrievedChunk]:
        """Return chunks at or above the similarity threshold, best first.

        Args:
            query: Natural-language search query.
            organization_id: Organisation whose chunks are searched.
            limit: Maximum number of results.
            threshold: Minimum cosine similarity.

        Returns:
            Ranked RetrievedChunk list.
        """
        query_embedding = await self._embedder.embed(query)
        candidates = await self._load_candidates(organization_id)

        ranked: list[RetrievedChunk] = []
        for candidate in candidates:
            similarity = cosine_similarity(query_embedding, candidate.embedding)
            if similarity >= threshold:
                ranked.append(
                    RetrievedChunk(
                        chunk_id=candidate.chunk_id,
                        document_id=candidate.document_id,
                        document_title=candidate.document_title,
                        content=candidate.content,
                        similarity=similarity,
                    )
                )

        ranked.sort(key=lambda chunk: chunk.similarity, reverse=True)
        logger.debug(
            "Semantic search completed",
            organization_id=str(organization_id),
            candidate_count=len(candidates),
            result_count=min(len(ranked), limit),
        )
        return ranked[:limit]
