"""Prompt composition for tier-scoped AI requests.

Each kind of context is rendered into its own delimited section. Internal
sections (governance policy, knowledge base chunks) are only ever emitted for
the internal_secure tier, and the advisory block is only ever emitted for the
external_awareness tier, so advisory content cannot share a prompt with the
material used for generation or scoring.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from maturion_assessment.core.interfaces import ExternalInsight, OrganizationProfile, RetrievedChunk
from maturion_assessment.core.knowledge_tiers import KnowledgeTier

if TYPE_CHECKING:
    from maturion_assessment.core.retrieval import ContextBundle

SYSTEM_PROMPT: str = (
    "You are Maturion, an expert AI assistant specializing in enterprise security "
    "maturity assessment and compliance frameworks. You provide precise, actionable "
    "guidance based on uploaded knowledge base documents and organizational context. "
    "Maturity levels progress Basic -> Reactive -> Compliant -> Pro-active -> Resilient."
)

ADVISORY_BEGIN: str = "=== BEGIN EXTERNAL THREAT INTELLIGENCE (ADVISORY ONLY) ==="
ADVISORY_END: str = "=== END EXTERNAL THREAT INTELLIGENCE ==="
ADVISORY_NOTE: str = (
    "NOTE: This external intelligence is ADVISORY ONLY and does not impact "
    "maturity scores or evidence decisions."
)

_NOT_SPECIFIED = "Not specified"

MIN_MPS_NUMBER: int = 1
MAX_MPS_NUMBER: int = 25

_MPS_PATTERN = re.compile(r"\bMPS\s*(\d+)", re.IGNORECASE)
_EVENT_HANDLER_PATTERN = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
_JS_PROTOCOL_PATTERN = re.compile(r"javascript:", re.IGNORECASE)


@dataclass(frozen=True)
class ComposedPrompt:
    """System and user messages ready for the language-model collaborator."""

    system_prompt: str
    user_prompt: str


def sanitize_input(text: str | None) -> str:
    """Strip markup that must never reach a prompt.

    Removes angle brackets, ``javascript:`` protocols and inline event
    handlers, then trims surrounding whitespace.

    Args:
        text: Raw user-supplied text.

    Returns:
        Sanitised text; empty string for None or non-string input.
    """
    if not text or not isinstance(text, str):
        return ""
    cleaned = text.replace("<", "").replace(">", "")
    cleaned = _JS_PROTOCOL_PATTERN.sub("", cleaned)
    cleaned = _EVENT_HANDLER_PATTERN.sub("", cleaned)
    return cleaned.strip()


def validate_mps_number(value: object) -> int | None:
    """Return the MPS number when it lies within 1-25, otherwise None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if MIN_MPS_NUMBER <= number <= MAX_MPS_NUMBER else None


def extract_mps_number(prompt_text: str) -> int | None:
    """Find an ``MPS <n>`` reference in the prompt text."""
    match = _MPS_PATTERN.search(prompt_text)
    return validate_mps_number(match.group(1)) if match else None


def render_organization_context(profile: OrganizationProfile) -> str:
    """Render an organisation profile as a labelled context section."""

    def _join(values: Sequence[str]) -> str:
        return ", ".join(values) if values else _NOT_SPECIFIED

    lines = [
        "=== ORGANIZATIONAL PROFILE ===",
        f"Organization: {profile.name or _NOT_SPECIFIED}",
        f"Description: {profile.description or _NOT_SPECIFIED}",
        f"Primary Website: {profile.primary_website_url or _NOT_SPECIFIED}",
        f"Organization Size: {profile.organization_size or _NOT_SPECIFIED}",
        f"Departments: {_join(profile.departments)}",
        f"Industry Tags: {_join(profile.industry_tags)}",
        f"Operating Region: {profile.region_operating or _NOT_SPECIFIED}",
        f"Risk Concerns: {_join(profile.risk_concerns)}",
        f"Compliance Commitments: {_join(profile.compliance_commitments)}",
        f"Threat Sensitivity Level: {profile.threat_sensitivity_level or 'Basic'}",
    ]
    return "\n".join(lines)


def render_document_context(chunks: Sequence[RetrievedChunk]) -> str:
    """Render retrieved chunks as titled knowledge base excerpts, in order."""
    return "\n\n".join(
        f"## {chunk.document_title or 'Internal Document'}\n{chunk.content}" for chunk in chunks
    )


def render_advisory_block(
    profile: OrganizationProfile,
    insights: Sequence[ExternalInsight],
) -> str:
    """Render matched external insights inside the fenced advisory block.

    Args:
        profile: Organisation risk profile the insights were matched against.
        insights: Insights to render, newest first.

    Returns:
        The advisory block, or an empty string when there are no insights.
    """
    if not insights:
        return ""

    lines = [
        ADVISORY_BEGIN,
        (
            f"Matched to your risk profile: {', '.join(profile.industry_tags) or _NOT_SPECIFIED} | "
            f"{profile.region_operating or _NOT_SPECIFIED} | "
            f"{', '.join(profile.risk_concerns) or _NOT_SPECIFIED}"
        ),
        "",
    ]
    for insight in insights:
        lines.extend(
            [
                f"THREAT ALERT [{insight.risk_level} Risk]: {insight.title}",
                f"Published: {insight.published_at.date().isoformat()}",
                f"Summary: {insight.summary}",
                (
                    f"Tags: Industry [{', '.join(insight.industry_tags)}] | "
                    f"Region [{', '.join(insight.region_tags)}] | "
                    f"Threats [{', '.join(insight.threat_tags)}]"
                ),
                f"Source: {insight.source_type} | Verified: {'Yes' if insight.is_verified else 'No'}",
                "",
            ]
        )
    lines.append(ADVISORY_NOTE)
    lines.append(ADVISORY_END)
    return "\n".join(lines)


def compose_prompt(bundle: "ContextBundle") -> ComposedPrompt:
    """Assemble the final prompt from a tier-scoped context bundle.

    Section order: governance policy, organisation profile, knowledge base
    context, advisory block, user request, response guidelines.

    Args:
        bundle: Context gathered by the retrieval router.

    Returns:
        ComposedPrompt with the system and user messages.
    """
    is_internal = bundle.knowledge_tier is KnowledgeTier.INTERNAL_SECURE
    is_external = bundle.knowledge_tier is KnowledgeTier.EXTERNAL_AWARENESS
    sections: list[str] = []

    if is_internal and bundle.policy_text:
        sections.append(f"=== AI BEHAVIOR & KNOWLEDGE SOURCE POLICY ===\n{bundle.policy_text}")

    if bundle.organization_context:
        sections.append(bundle.organization_context)

    if is_internal and bundle.chunks:
        sections.append(f"=== KNOWLEDGE BASE CONTEXT ===\n{render_document_context(bundle.chunks)}")

    if is_external and bundle.advisory_context:
        sections.append(bundle.advisory_context)

    sections.append(f"=== USER REQUEST ===\n{bundle.prompt_text}")

    if bundle.free_text_context:
        sections.append(f"=== REQUEST CONTEXT ===\n{bundle.free_text_context}")

    if is_internal:
        guidelines = [
            "=== RESPONSE GUIDELINES ===",
            "- Base your response ONLY on the provided knowledge base content and organizational context",
            "- Do not rely on general knowledge or external sources",
            "- If the knowledge base doesn't contain sufficient information, state this clearly",
            "- Maintain consistency with the AI Behavior Policy outlined above",
            "- Provide specific, actionable guidance relevant to the organization's profile",
        ]
        if not bundle.chunks:
            guidelines.append(
                "- No internal documentation was retrieved for this request: say so explicitly "
                "and do not fabricate organisation-specific requirements"
            )
        sections.append("\n".join(guidelines))
    elif is_external:
        sections.append(
            "=== RESPONSE GUIDELINES ===\n"
            "- Treat the threat intelligence above as advisory context only\n"
            "- Never present it as evidence for a maturity level or compliance score"
        )

    return ComposedPrompt(system_prompt=SYSTEM_PROMPT, user_prompt="\n\n".join(sections))
