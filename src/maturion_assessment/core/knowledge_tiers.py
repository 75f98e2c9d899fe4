"""Knowledge tier classification for AI requests.

Every AI request is classified into exactly one knowledge tier before any
context is gathered. The tier decides which content sources may be consulted:

    internal_secure         — governance and audit content (MPS, intent,
                              criteria generation, compliance scoring, roadmap
                              and audit structure). Domain-scoped requests
                              always land here.
    external_awareness      — advisory threat intelligence only.
    organizational_context  — organisation profile metadata only.
    general                 — unclassified, lowest trust, no stored context.

Classification is an ordered list of rules; the first matching rule wins.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum


class KnowledgeTier(str, Enum):
    """Knowledge tier governing which sources may inform an AI response."""

    INTERNAL_SECURE = "internal_secure"
    ORGANIZATIONAL_CONTEXT = "organizational_context"
    EXTERNAL_AWARENESS = "external_awareness"
    GENERAL = "general"


class SourceType(str, Enum):
    """Provenance of the context an AI response was built from."""

    INTERNAL = "internal"
    EXTERNAL = "external"


TIER_SOURCE_TYPES: dict[KnowledgeTier, SourceType] = {
    KnowledgeTier.INTERNAL_SECURE: SourceType.INTERNAL,
    KnowledgeTier.ORGANIZATIONAL_CONTEXT: SourceType.INTERNAL,
    KnowledgeTier.EXTERNAL_AWARENESS: SourceType.EXTERNAL,
    KnowledgeTier.GENERAL: SourceType.EXTERNAL,
}


INTERNAL_SECURE_KEYWORDS: tuple[str, ...] = (
    "mps",
    "maturity practice statement",
    "intent statement",
    "intent",
    "intents",
    "criteria",
    "criterion",
    "audit structure",
    "audit",
    "audits",
    "maturity level",
    "maturity",
    "compliance scoring",
    "compliance",
    "scoring",
    "evidence",
    "roadmap",
    "roadmaps",
    "domain content",
)

EXTERNAL_AWARENESS_KEYWORDS: tuple[str, ...] = (
    "threat",
    "threats",
    "risk horizon",
    "risk intelligence",
    "emerging risk",
    "risk",
    "risks",
    "surveillance",
    "situational awareness",
    "awareness",
    "intelligence",
    "threat alert",
    "threat alerts",
)

ORGANIZATIONAL_CONTEXT_KEYWORDS: tuple[str, ...] = (
    "organization",
    "organisation",
    "organizations",
    "organisations",
    "org size",
    "company size",
    "headcount",
    "structure",
    "roles",
    "role",
    "departments",
    "department",
    "team",
    "teams",
    "onboarding",
)


@dataclass(frozen=True)
class TierRequest:
    """Inputs to tier classification.

    Attributes:
        prompt_text: The user's natural-language request.
        free_text_context: Free-text context supplied by the calling screen.
        current_domain: Domain the request is scoped to, if any.
    """

    prompt_text: str
    free_text_context: str = ""
    current_domain: str | None = None

    @property
    def searchable_text(self) -> str:
        """Prompt and context joined and lower-cased for keyword matching."""
        return f"{self.prompt_text}\n{self.free_text_context}".lower()


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    """Compile keywords into one alternation that only matches whole words."""
    alternation = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"\b(?:{alternation})\b")


@dataclass(frozen=True)
class TierRule:
    """One classification rule: a predicate that, when true, selects a tier.

    Attributes:
        tier: The tier this rule assigns.
        keywords: Trigger keywords matched against prompt and context.
        matches_scope: Optional extra predicate over the whole request.
    """

    tier: KnowledgeTier
    keywords: tuple[str, ...] = ()
    matches_scope: Callable[[TierRequest], bool] | None = None
    _pattern: re.Pattern[str] | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.keywords:
            object.__setattr__(self, "_pattern", _keyword_pattern(self.keywords))

    def matches(self, request: TierRequest) -> bool:
        """Return True when this rule selects its tier for the request."""
        if self._pattern is not None and self._pattern.search(request.searchable_text):
            return True
        return self.matches_scope is not None and self.matches_scope(request)

    def matched_keywords(self, request: TierRequest) -> list[str]:
        """Return the distinct keywords of this rule found in the request."""
        if self._pattern is None:
            return []
        return sorted({match.group(0) for match in self._pattern.finditer(request.searchable_text)})


def _is_domain_scoped(request: TierRequest) -> bool:
    return bool(request.current_domain and request.current_domain.strip())


TIER_RULES: tuple[TierRule, ...] = (
    TierRule(
        tier=KnowledgeTier.INTERNAL_SECURE,
        keywords=INTERNAL_SECURE_KEYWORDS,
        matches_scope=_is_domain_scoped,
    ),
    TierRule(tier=KnowledgeTier.EXTERNAL_AWARENESS, keywords=EXTERNAL_AWARENESS_KEYWORDS),
    TierRule(tier=KnowledgeTier.ORGANIZATIONAL_CONTEXT, keywords=ORGANIZATIONAL_CONTEXT_KEYWORDS),
)


def classify_request(
    request: TierRequest,
    rules: tuple[TierRule, ...] = TIER_RULES,
) -> KnowledgeTier:
    """Classify a request into exactly one knowledge tier.

    Rules are evaluated in order and the first match wins. A request that
    matches no rule is GENERAL.

    Args:
        request: The request to classify.
        rules: Ordered classification rules. Defaults to TIER_RULES.

    Returns:
        The selected KnowledgeTier.
    """
    for rule in rules:
        if rule.matches(request):
            return rule.tier
    return KnowledgeTier.GENERAL
