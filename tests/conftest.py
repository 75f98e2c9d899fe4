"""Test fixtures for maturion-assessment.

Provides fixed identifiers, value-object factories, mocked collaborators, and
an async HTTP client with the service dependency factories overridden.
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from maturion_assessment.core.interfaces import (
    ExternalInsight,
    OrganizationProfile,
    RetrievedChunk,
)
from maturion_assessment.core.retrieval import RetrievalRouter
from maturion_assessment.main import app

FIXED_NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


@pytest.fixture()
def organization_id() -> uuid.UUID:
    """Fixed organisation UUID for tests."""
    return uuid.UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture()
def domain_id() -> uuid.UUID:
    """Fixed domain UUID for tests."""
    return uuid.UUID("33333333-3333-3333-3333-333333333333")


# ---------------------------------------------------------------------------
# Value-object factories
# ---------------------------------------------------------------------------


def _make_chunk(
    similarity: float,
    chunk_id: uuid.UUID | None = None,
    document_id: uuid.UUID | None = None,
    title: str = "Leadership & Governance MPS Guide",
    content: str = "MPS 1 requires a documented security governance charter.",
) -> RetrievedChunk:
    """Build a RetrievedChunk with sensible defaults."""
    return RetrievedChunk(
        chunk_id=chunk_id or uuid.uuid4(),
        document_id=document_id or uuid.uuid4(),
        document_title=title,
        content=content,
        similarity=similarity,
    )


def _make_insight(
    title: str = "Cash-in-transit attacks rising",
    published_at: datetime | None = None,
    is_verified: bool = True,
    industry_tags: tuple[str, ...] = ("Mining",),
    region_tags: tuple[str, ...] = ("Southern Africa",),
    threat_tags: tuple[str, ...] = ("Armed robbery",),
) -> ExternalInsight:
    """Build an ExternalInsight published two days before FIXED_NOW by default."""
    return ExternalInsight(
        insight_id=uuid.uuid4(),
        title=title,
        summary="Organised groups are targeting high-value transfers.",
        risk_level="High",
        published_at=published_at or FIXED_NOW - timedelta(days=2),
        source_type="Industry bulletin",
        is_verified=is_verified,
        industry_tags=industry_tags,
        region_tags=region_tags,
        threat_tags=threat_tags,
    )


@pytest.fixture()
def profile(organization_id: uuid.UUID) -> OrganizationProfile:
    """Organisation profile with a moderate threat sensitivity."""
    return OrganizationProfile(
        organization_id=organization_id,
        name="Acme Mining",
        description="Diamond mining and processing",
        industry_tags=("Mining",),
        region_operating="Southern Africa",
        risk_concerns=("Armed robbery", "Insider theft"),
        compliance_commitments=("ISO 27001",),
        threat_sensitivity_level="Moderate",
        organization_size="1000-5000 employees",
        departments=("Security", "Operations"),
    )


@pytest.fixture()
def now() -> datetime:
    """Fixed current time used by the router clock."""
    return FIXED_NOW


@pytest.fixture()
def chunk_factory():
    """Factory building RetrievedChunk objects."""
    return _make_chunk


@pytest.fixture()
def insight_factory():
    """Factory building ExternalInsight objects."""
    return _make_insight


# ---------------------------------------------------------------------------
# Mocked collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_retriever() -> AsyncMock:
    retriever = AsyncMock()
    retriever.search.return_value = []
    return retriever


@pytest.fixture()
def mock_policies() -> AsyncMock:
    policies = AsyncMock()
    policies.get_policy_text.return_value = "Only use internal documents for scoring."
    return policies


@pytest.fixture()
def mock_organizations(profile: OrganizationProfile) -> AsyncMock:
    organizations = AsyncMock()
    organizations.get_profile.return_value = profile
    return organizations


@pytest.fixture()
def mock_insights() -> AsyncMock:
    insights = AsyncMock()
    insights.list_verified_insights.return_value = []
    return insights


@pytest.fixture()
def retrieval_router(
    mock_retriever: AsyncMock,
    mock_policies: AsyncMock,
    mock_organizations: AsyncMock,
    mock_insights: AsyncMock,
) -> RetrievalRouter:
    """RetrievalRouter over mocked collaborators with a fixed clock."""
    return RetrievalRouter(
        document_retriever=mock_retriever,
        policy_repository=mock_policies,
        organization_repository=mock_organizations,
        insight_store=mock_insights,
        query_timeout_seconds=0.5,
        clock=lambda: FIXED_NOW,
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async test client; tests install their own dependency overrides."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
