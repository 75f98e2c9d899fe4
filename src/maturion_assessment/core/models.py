"""SQLAlchemy ORM models for the Maturion assessment service.

All tables use the `mat_` prefix. Organisation-scoped tables extend
OrganizationScopedModel which supplies id (UUID), organization_id,
created_at, and updated_at columns.

Domain model:
  Organization               — assessed organisation with its risk profile
  Domain                     — top-level grouping of an assessment framework
  MaturityPracticeStatement  — numbered MPS (1-25) within a domain
  Criterion                  — auditable requirement beneath an MPS
  AIDocument                 — ingested knowledge base document
  AIDocumentChunk            — chunk of an ingested document with its embedding
  ExternalInsight            — verified external threat-intelligence record (advisory only)

Scores are never persisted: a DomainScore is always recalculated from the
criteria responses.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Declarative base for every Maturion table."""


class TimestampedModel(Base):
    """Abstract base supplying a UUID primary key and audit timestamps."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class OrganizationScopedModel(TimestampedModel):
    """Abstract base for rows owned by exactly one organisation."""

    __abstract__ = True

    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("mat_organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning organisation; every read is scoped by this column",
    )


class Organization(TimestampedModel):
    """An organisation whose security maturity is assessed.

    Carries the profile fields used to tailor AI context and to match
    external insights (industry, region, risk concerns, threat sensitivity).

    Table: mat_organizations
    """

    __tablename__ = "mat_organizations"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name of the organisation",
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    primary_website_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    organization_size: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Free-form size band, e.g. '500-1000 employees'",
    )
    departments: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        comment="Department names",
    )
    industry_tags: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        comment="Industries the organisation operates in",
    )
    region_operating: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Primary operating region",
    )
    risk_concerns: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        comment="Threat categories of concern, matched against insight threat tags",
    )
    compliance_commitments: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        comment="Frameworks and standards the organisation has committed to",
    )
    threat_sensitivity_level: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="Basic",
        comment="Basic | Moderate | Advanced; Basic disables external awareness context",
    )

    domains: Mapped[list["Domain"]] = relationship(
        "Domain",
        back_populates="organization",
        cascade="all, delete-orphan",
    )


class Domain(OrganizationScopedModel):
    """A top-level grouping of an assessment framework.

    Table: mat_domains
    """

    __tablename__ = "mat_domains"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Domain name, e.g. 'Leadership & Governance'",
    )
    target_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="compliant",
        comment="basic | reactive | compliant | proactive | resilient",
    )
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    organization: Mapped["Organization"] = relationship(
        "Organization",
        back_populates="domains",
    )
    practice_statements: Mapped[list["MaturityPracticeStatement"]] = relationship(
        "MaturityPracticeStatement",
        back_populates="domain",
        cascade="all, delete-orphan",
        order_by="MaturityPracticeStatement.mps_number",
    )


class MaturityPracticeStatement(OrganizationScopedModel):
    """A numbered Maturity Practice Statement within a domain.

    Table: mat_maturity_practice_statements
    """

    __tablename__ = "mat_maturity_practice_statements"
    __table_args__ = (UniqueConstraint("domain_id", "mps_number", name="uq_mat_mps_domain_number"),)

    domain_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("mat_domains.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mps_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="MPS number, 1-25",
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    intent_statement: Mapped[str | None] = mapped_column(Text, nullable=True)

    domain: Mapped["Domain"] = relationship("Domain", back_populates="practice_statements")
    criteria: Mapped[list["Criterion"]] = relationship(
        "Criterion",
        back_populates="practice_statement",
        cascade="all, delete-orphan",
    )


class Criterion(OrganizationScopedModel):
    """An auditable requirement beneath an MPS.

    Table: mat_criteria
    """

    __tablename__ = "mat_criteria"

    mps_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("mat_maturity_practice_statements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    criteria_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Human-facing number, e.g. '3.2'",
    )
    statement: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    practice_statement: Mapped["MaturityPracticeStatement"] = relationship(
        "MaturityPracticeStatement",
        back_populates="criteria",
    )


class AIDocument(OrganizationScopedModel):
    """A knowledge base document ingested for an organisation.

    Table: mat_ai_documents
    """

    __tablename__ = "mat_ai_documents"

    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    document_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="guidance_document",
        comment="e.g. ai_logic_policy | mps_document | guidance_document",
    )
    processing_status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="pending",
        comment="pending | processing | completed | failed",
    )

    chunks: Mapped[list["AIDocumentChunk"]] = relationship(
        "AIDocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="AIDocumentChunk.chunk_index",
    )


class AIDocumentChunk(OrganizationScopedModel):
    """A retrievable chunk of an ingested document.

    The embedding is null until the backfill worker has processed the chunk.

    Table: mat_ai_document_chunks
    """

    __tablename__ = "mat_ai_document_chunks"

    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("mat_ai_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    embedding: Mapped[list | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="Embedding vector as a JSON array of floats",
    )

    document: Mapped["AIDocument"] = relationship("AIDocument", back_populates="chunks")


class ExternalInsight(TimestampedModel):
    """A verified external threat-intelligence record.

    Global rather than organisation-scoped. Advisory only: never an input to
    scoring or evidence decisions.

    Table: mat_external_insights
    """

    __tablename__ = "mat_external_insights"

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    risk_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Low | Medium | High | Critical",
    )
    source_type: Mapped[str] = mapped_column(String(100), nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    published_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    industry_tags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    region_tags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    threat_tags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
