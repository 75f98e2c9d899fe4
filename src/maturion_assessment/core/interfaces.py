"""Abstract interfaces (Protocol classes) for the Maturion assessment service.

All services depend on these interfaces, not concrete implementations.
This enables dependency injection and makes services independently testable.

The value objects at the top of this module are what collaborators hand back
to the core: retrieval results, organisation risk profiles, and external
insight records. Concrete implementations live in ``adapters/``.
"""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Value objects exchanged with collaborators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetrievedChunk:
    """A document chunk returned by semantic search.

    Attributes:
        chunk_id: Identity used for deduplication across sub-queries.
        document_id: Source document of the chunk.
        document_title: Title of the source document.
        content: Chunk text.
        similarity: Similarity to the query, higher is closer.
    """

    chunk_id: uuid.UUID
    document_id: uuid.UUID
    document_title: str
    content: str
    similarity: float


@dataclass(frozen=True)
class OrganizationProfile:
    """Organisation metadata used for context tailoring and insight matching."""

    organization_id: uuid.UUID
    name: str
    description: str | None = None
    primary_website_url: str | None = None
    industry_tags: tuple[str, ...] = ()
    region_operating: str | None = None
    risk_concerns: tuple[str, ...] = ()
    compliance_commitments: tuple[str, ...] = ()
    threat_sensitivity_level: str = "Basic"
    organization_size: str | None = None
    departments: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExternalInsight:
    """A verified external threat-intelligence record. Advisory only."""

    insight_id: uuid.UUID
    title: str
    summary: str
    risk_level: str
    published_at: datetime
    source_type: str
    is_verified: bool = True
    industry_tags: tuple[str, ...] = ()
    region_tags: tuple[str, ...] = ()
    threat_tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class DomainRecord:
    """A domain with the criteria registered beneath its MPS."""

    domain_id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    criteria_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class PendingChunk:
    """An ingested chunk that still needs an embedding vector."""

    chunk_id: uuid.UUID
    content: str


@dataclass(frozen=True)
class EmbeddedChunk:
    """A stored chunk with its embedding, as read for similarity ranking."""

    chunk_id: uuid.UUID
    document_id: uuid.UUID
    document_title: str
    content: str
    embedding: tuple[float, ...]


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@runtime_checkable
class ICriteriaStore(Protocol):
    """Scoped read access to the domain -> MPS -> criteria hierarchy."""

    async def get_domain(
        self,
        domain_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> DomainRecord | None:
        """Return a domain with its criteria ids, or None when absent for the organisation."""
        ...


@runtime_checkable
class IDocumentChunkStore(Protocol):
    """Scoped access to ingested document chunks."""

    async def list_chunks_missing_embeddings(
        self,
        organization_id: uuid.UUID,
        limit: int,
    ) -> list[PendingChunk]:
        """List up to ``limit`` chunks of the organisation without an embedding."""
        ...

    async def save_embedding(
        self,
        chunk_id: uuid.UUID,
        embedding: Sequence[float],
    ) -> None:
        """Attach an embedding vector to a chunk."""
        ...

    async def list_embedded_chunks(self, organization_id: uuid.UUID) -> list[EmbeddedChunk]:
        """List every chunk of the organisation that has an embedding."""
        ...


@runtime_checkable
class IPolicyRepository(Protocol):
    """Lookup of the organisation's AI governance policy text."""

    async def get_policy_text(
        self,
        organization_id: uuid.UUID,
        title: str,
    ) -> str:
        """Return the concatenated policy text, or an empty string when none exists."""
        ...


@runtime_checkable
class IOrganizationRepository(Protocol):
    """Lookup of organisation profiles."""

    async def get_profile(self, organization_id: uuid.UUID) -> OrganizationProfile | None:
        """Return the organisation profile, or None when unknown."""
        ...


@runtime_checkable
class IInsightStore(Protocol):
    """Read access to verified external threat-intelligence records."""

    async def list_verified_insights(
        self,
        published_after: datetime,
        limit: int,
    ) -> list[ExternalInsight]:
        """List verified insights published after the cutoff, newest first."""
        ...


# ---------------------------------------------------------------------------
# AI collaborators
# ---------------------------------------------------------------------------


@runtime_checkable
class IDocumentRetriever(Protocol):
    """Semantic search over an organisation's ingested, embedded chunks."""

    async def search(
        self,
        query: str,
        organization_id: uuid.UUID,
        limit: int,
        threshold: float,
    ) -> list[RetrievedChunk]:
        """Return chunks ranked by similarity to the query.

        Args:
            query: Natural-language search query.
            organization_id: Organisation whose chunks may be searched.
            limit: Maximum number of results.
            threshold: Minimum similarity for a chunk to be returned.

        Returns:
            Ranked chunks; an empty list when nothing is similar enough.
        """
        ...


@runtime_checkable
class IEmbeddingClient(Protocol):
    """Text embedding provider."""

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for a piece of text."""
        ...


@runtime_checkable
class ILanguageModelClient(Protocol):
    """Chat-completion provider."""

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the model's reply to the composed prompt."""
        ...

