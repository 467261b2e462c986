"""
Rule Engine - Registry of SEO checks and the impact/effort/priority model.

Design:
- A rule is a plain function over a read-only Corpus returning IssueDrafts
- Rules register themselves under one IssueType and one IssueCategory
- The registry turns drafts into Issues stamped with type, category and run
- Score tables are enum-keyed and validated at import time
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable

import structlog
from pydantic import BaseModel, Field

from sitescope.engines.base import Corpus, Issue, IssueCategory, IssueType, PageRecord, Severity

logger = structlog.get_logger(__name__)


# ─────────────────────────────────────────────
# Rule Schema
# ─────────────────────────────────────────────

class IssueDraft(BaseModel):
    """A candidate issue as produced by a rule, before scoring."""
    severity: Severity
    title: str
    description: str
    recommendation: str = ""
    page: PageRecord | None = None
    data: dict[str, Any] = Field(default_factory=dict)


RuleCheck = Callable[[Corpus], Iterable[IssueDraft]]


@dataclass(frozen=True)
class Rule:
    type: IssueType
    category: IssueCategory
    check: RuleCheck

    def evaluate(self, corpus: Corpus) -> list[Issue]:
        issues = []
        for draft in self.check(corpus):
            issues.append(
                Issue(
                    run_id=corpus.run.id,
                    category=self.category,
                    type=self.type,
                    severity=draft.severity,
                    title=draft.title,
                    description=draft.description,
                    recommendation=draft.recommendation,
                    page_id=draft.page.id if draft.page else None,
                    page_url=draft.page.url if draft.page else draft.data.get("url"),
                    data=draft.data,
                )
            )
        return issues


# ─────────────────────────────────────────────
# Rule Registry
# ─────────────────────────────────────────────

class RuleRegistry:
    """
    Holds every rule keyed by IssueType.
    Rule modules register through the `rule` decorator at import.
    """

    def __init__(self):
        self._rules: dict[IssueType, Rule] = {}

    def rule(self, issue_type: IssueType, category: IssueCategory) -> Callable[[RuleCheck], RuleCheck]:
        def decorator(fn: RuleCheck) -> RuleCheck:
            self.register(Rule(type=issue_type, category=category, check=fn))
            return fn
        return decorator

    def register(self, rule: Rule) -> None:
        if rule.type in self._rules:
            raise ValueError(f"Rule for '{rule.type.value}' is already registered")
        self._rules[rule.type] = rule

    def get_by_category(self, category: IssueCategory) -> list[Rule]:
        return [r for r in self._rules.values() if r.category == category]

    def get(self, issue_type: IssueType) -> Rule | None:
        return self._rules.get(issue_type)

    def get_all(self) -> list[Rule]:
        return list(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)


registry = RuleRegistry()


def get_rule_registry() -> RuleRegistry:
    """The process-wide registry with every rule module loaded."""
    # Importing the engines registers their rules
    import sitescope.engines.ai.engine  # noqa: F401
    import sitescope.engines.content.engine  # noqa: F401
    import sitescope.engines.technical.engine  # noqa: F401

    return registry


# ─────────────────────────────────────────────
# Score Tables
# ─────────────────────────────────────────────

SEVERITY_BASE: dict[Severity, int] = {
    Severity.CRITICAL: 90,
    Severity.HIGH: 75,
    Severity.MEDIUM: 50,
    Severity.LOW: 25,
}

CATEGORY_MULTIPLIER: dict[IssueCategory, Decimal] = {
    IssueCategory.TECHNICAL: Decimal("1.0"),
    IssueCategory.PERFORMANCE: Decimal("0.9"),
    IssueCategory.CONTENT: Decimal("0.8"),
    IssueCategory.ACCESSIBILITY: Decimal("0.7"),
    IssueCategory.AI: Decimal("0.6"),
}

DEFAULT_EFFORT = 50

# Lower effort = quicker win
EFFORT_SCORES: dict[IssueType, int] = {
    IssueType.MISSING_TITLE: 20,
    IssueType.MISSING_META_DESCRIPTION: 25,
    IssueType.MISSING_H1: 20,
    IssueType.DUPLICATE_TITLES: 40,
    IssueType.BROKEN_INTERNAL_LINK: 30,
    IssueType.SLOW_PAGE: 70,
    IssueType.HEAVY_PAGE: 60,
    IssueType.MISSING_STRUCTURED_DATA: 50,
    IssueType.LOW_EAT_SCORE: 80,
    IssueType.SHORT_CONTENT: 60,
    IssueType.TITLE_LENGTH: DEFAULT_EFFORT,
    IssueType.DUPLICATE_META_DESCRIPTIONS: DEFAULT_EFFORT,
    IssueType.META_DESCRIPTION_LENGTH: DEFAULT_EFFORT,
    IssueType.CLIENT_ERROR_PAGE: DEFAULT_EFFORT,
    IssueType.SERVER_ERROR: DEFAULT_EFFORT,
    IssueType.REDIRECT_CHAIN: DEFAULT_EFFORT,
    IssueType.BROKEN_EXTERNAL_LINK: DEFAULT_EFFORT,
    IssueType.MISSING_CANONICAL: DEFAULT_EFFORT,
    IssueType.BLOCKED_BUT_LINKED: DEFAULT_EFFORT,
    IssueType.SITEMAP_ERROR_URL: DEFAULT_EFFORT,
    IssueType.MULTIPLE_H1: DEFAULT_EFFORT,
    IssueType.GENERIC_TITLE: DEFAULT_EFFORT,
    IssueType.ORPHAN_PAGE: DEFAULT_EFFORT,
    IssueType.FEATURED_SNIPPET_OPPORTUNITY: DEFAULT_EFFORT,
    IssueType.KEYWORD_STUFFING: DEFAULT_EFFORT,
    IssueType.IMAGES_WITHOUT_ALT: DEFAULT_EFFORT,
    IssueType.FAQ_SCHEMA_OPPORTUNITY: DEFAULT_EFFORT,
    IssueType.HOWTO_SCHEMA_OPPORTUNITY: DEFAULT_EFFORT,
    IssueType.COMPARISON_CONTENT_OPPORTUNITY: DEFAULT_EFFORT,
    IssueType.HIGH_AI_POTENTIAL: DEFAULT_EFFORT,
}


def validate_score_tables() -> None:
    """Fail fast when an enum member has no score entry."""
    missing: list[str] = []
    missing += [f"severity:{s.value}" for s in Severity if s not in SEVERITY_BASE]
    missing += [f"category:{c.value}" for c in IssueCategory if c not in CATEGORY_MULTIPLIER]
    missing += [f"effort:{t.value}" for t in IssueType if t not in EFFORT_SCORES]
    if missing:
        raise RuntimeError(f"Score tables are incomplete: {', '.join(missing)}")


validate_score_tables()


# ─────────────────────────────────────────────
# Score Formulas
# ─────────────────────────────────────────────

def calculate_impact_score(severity: Severity, category: IssueCategory) -> int:
    """
    Impact = severity base x category multiplier, halves rounded up.

    critical/technical -> 90, low/performance -> 23, high/accessibility -> 53
    """
    impact = Decimal(SEVERITY_BASE[severity]) * CATEGORY_MULTIPLIER[category]
    return int(impact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_effort_score(issue_type: IssueType) -> int:
    return EFFORT_SCORES[issue_type]


def calculate_priority_score(impact_score: int, effort_score: int) -> float:
    """Priority = impact x 0.7 + (100 - effort) x 0.3."""
    return impact_score * 0.7 + (100 - effort_score) * 0.3
