"""
AI / Answer-Engine Readiness Engine

Heuristics over title, H1 and content metrics:
- Content shapes (FAQ, how-to, comparison, definition) from title/H1 terms
  in English and Portuguese
- Structured-data gaps for those shapes
- A per-page E-E-A-T score (experience, expertise, authoritativeness,
  trustworthiness), each sub-score capped at 25
- An AI-potential score for direct-answer style content
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import structlog

from sitescope.core.rule_engine import IssueDraft, registry
from sitescope.engines.base import AnalysisEngine, Corpus, IssueCategory, IssueType, PageContent, Severity

logger = structlog.get_logger(__name__)

EEAT_SUBSCORE_BASE = 10
EEAT_SUBSCORE_CAP = 25
LOW_EEAT_THRESHOLD = 50
HIGH_AI_POTENTIAL_THRESHOLD = 70


def _terms(*terms: str) -> re.Pattern[str]:
    return re.compile(r"\b(" + "|".join(re.escape(t) for t in terms) + r")\b", re.IGNORECASE)


CONTENT_SHAPES: dict[str, re.Pattern[str]] = {
    "faq": _terms("faq", "faqs", "frequently asked questions", "perguntas frequentes", "perguntas"),
    "howto": _terms("how to", "como fazer", "tutorial", "guia", "guide", "passo a passo", "step by step"),
    "comparison": _terms("vs", "versus", "comparação", "comparativo", "comparison", "compare"),
    "definition": _terms("o que é", "what is", "definição", "definition", "significa", "meaning"),
}

QUESTION_TERMS = _terms("como", "what", "why", "how", "quando", "onde", "qual", "quais", "porque", "when", "where", "which")
LIST_TERMS = _terms("melhores", "top", "lista", "ranking", "versus", "vs", "comparação", "best", "list")
TUTORIAL_TERMS = _terms("tutorial", "guia", "passo", "steps", "como fazer", "guide", "how to")
DEFINITION_TERMS = CONTENT_SHAPES["definition"]


def detect_shapes(title: str, h1: str) -> set[str]:
    text = f"{title} {h1}"
    return {shape for shape, pattern in CONTENT_SHAPES.items() if pattern.search(text)}


# ─────────────────────────────────────────────
# Scores
# ─────────────────────────────────────────────

@dataclass
class EEATScore:
    experience: int
    expertise: int
    authoritativeness: int
    trustworthiness: int

    @property
    def total(self) -> int:
        return min(100, self.experience + self.expertise + self.authoritativeness + self.trustworthiness)

    def as_dict(self) -> dict[str, int]:
        return {
            "experience": self.experience,
            "expertise": self.expertise,
            "authoritativeness": self.authoritativeness,
            "trustworthiness": self.trustworthiness,
            "total": self.total,
        }


def eeat_score(content: PageContent) -> EEATScore:
    experience = expertise = authoritativeness = trustworthiness = EEAT_SUBSCORE_BASE

    if content.word_count > 500:
        experience += 5
    if content.word_count > 1000:
        experience += 5

    if content.h2_count > 0:
        expertise += 3
    if content.h3_count > 0:
        expertise += 2

    if content.external_links_count > 0:
        authoritativeness += 5
    if content.external_links_count > 3:
        authoritativeness += 5

    if content.title:
        trustworthiness += 3
    if content.meta_description:
        trustworthiness += 2

    return EEATScore(
        experience=min(EEAT_SUBSCORE_CAP, experience),
        expertise=min(EEAT_SUBSCORE_CAP, expertise),
        authoritativeness=min(EEAT_SUBSCORE_CAP, authoritativeness),
        trustworthiness=min(EEAT_SUBSCORE_CAP, trustworthiness),
    )


@dataclass
class AIPotential:
    score: int = 0
    factors: list[str] = field(default_factory=list)


def ai_potential(content: PageContent) -> AIPotential:
    text = f"{content.title} {content.h1}"
    potential = AIPotential()

    if QUESTION_TERMS.search(text):
        potential.score += 25
        potential.factors.append("direct question")
    if LIST_TERMS.search(text):
        potential.score += 20
        potential.factors.append("list or comparison")
    if 500 < content.word_count < 2000:
        potential.score += 15
        potential.factors.append("answer-sized content")
    if TUTORIAL_TERMS.search(text):
        potential.score += 20
        potential.factors.append("tutorial or guide")
    if DEFINITION_TERMS.search(text):
        potential.score += 20
        potential.factors.append("definition")

    return potential


class AIReadinessEngine(AnalysisEngine):

    ENGINE_NAME = "ai"
    CATEGORIES = (IssueCategory.AI,)


# ─────────────────────────────────────────────
# Rules
# ─────────────────────────────────────────────

@registry.rule(IssueType.FAQ_SCHEMA_OPPORTUNITY, IssueCategory.AI)
def faq_schema_opportunity(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.MEDIUM,
            title="FAQ schema opportunity",
            description=f"Page {page.url} has FAQ content without FAQPage structured data",
            recommendation="Add schema.org FAQPage markup for better visibility in AI answers",
            page=page,
            data={"url": page.url},
        )
        for page, content in corpus.html_pages()
        if "faq" in detect_shapes(content.title, content.h1)
        and "FAQPage" not in content.structured_data_types
    ]


@registry.rule(IssueType.HOWTO_SCHEMA_OPPORTUNITY, IssueCategory.AI)
def howto_schema_opportunity(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.LOW,
            title="HowTo schema opportunity",
            description=f"Page {page.url} looks like a tutorial without HowTo structured data",
            recommendation="Add schema.org HowTo markup with explicit steps",
            page=page,
            data={"url": page.url},
        )
        for page, content in corpus.html_pages()
        if "howto" in detect_shapes(content.title, content.h1)
        and "HowTo" not in content.structured_data_types
    ]


@registry.rule(IssueType.COMPARISON_CONTENT_OPPORTUNITY, IssueCategory.AI)
def comparison_content_opportunity(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.LOW,
            title="Comparison content opportunity",
            description=f"Page {page.url} compares options and could answer comparison queries",
            recommendation="Present the comparison as a table with clear criteria and a verdict",
            page=page,
            data={"url": page.url},
        )
        for page, content in corpus.html_pages()
        if "comparison" in detect_shapes(content.title, content.h1)
    ]


@registry.rule(IssueType.MISSING_STRUCTURED_DATA, IssueCategory.AI)
def missing_structured_data(corpus: Corpus) -> list[IssueDraft]:
    return [
        IssueDraft(
            severity=Severity.LOW,
            title="Missing structured data",
            description=f"Page {page.url} has no structured data",
            recommendation="Add the matching schema.org type (Article, Product, Organization...)",
            page=page,
            data={"url": page.url},
        )
        for page, content in corpus.html_pages()
        if not content.structured_data_types
    ]


@registry.rule(IssueType.LOW_EAT_SCORE, IssueCategory.AI)
def low_eat_score(corpus: Corpus) -> list[IssueDraft]:
    drafts = []
    for page, content in corpus.html_pages():
        score = eeat_score(content)
        if score.total >= LOW_EEAT_THRESHOLD:
            continue
        drafts.append(IssueDraft(
            severity=Severity.HIGH,
            title="Low E-E-A-T score",
            description=f"Page {page.url} has an E-E-A-T score of {score.total}/100",
            recommendation="Strengthen experience, expertise, authority and trust signals",
            page=page,
            data={"url": page.url, "eat_score": score.total, "breakdown": score.as_dict()},
        ))
    return drafts


@registry.rule(IssueType.HIGH_AI_POTENTIAL, IssueCategory.AI)
def high_ai_potential(corpus: Corpus) -> list[IssueDraft]:
    drafts = []
    for page, content in corpus.html_pages():
        potential = ai_potential(content)
        if potential.score <= HIGH_AI_POTENTIAL_THRESHOLD:
            continue
        drafts.append(IssueDraft(
            severity=Severity.LOW,
            title="High AI potential",
            description=f"Page {page.url} is well placed to be cited by AI answers",
            recommendation="Optimize for direct answers and add structured data",
            page=page,
            data={"url": page.url, "score": potential.score, "factors": potential.factors},
        ))
    return drafts
