"""
Scoring Engine - Turns raw rule findings into a single ranked action list.

Scoring Model:
  impact   = round(SEVERITY_BASE[severity] x CATEGORY_MULTIPLIER[category])
  effort   = EFFORT_SCORES[type]
  priority = impact x 0.7 + (100 - effort) x 0.3

Scoring is a pure function of the findings, so re-scoring an unchanged
corpus reproduces the same issues (ids and timestamps aside).
"""

from __future__ import annotations

from collections import Counter

import structlog

from sitescope.core.rule_engine import (
    calculate_effort_score,
    calculate_impact_score,
    calculate_priority_score,
)
from sitescope.engines.base import EngineResult, EngineStatus, Issue
from sitescope.storage.base import issue_rank_key

logger = structlog.get_logger(__name__)


def score_issue(issue: Issue) -> Issue:
    impact = calculate_impact_score(issue.severity, issue.category)
    effort = calculate_effort_score(issue.type)
    return issue.model_copy(update={
        "impact_score": impact,
        "effort_score": effort,
        "priority_score": calculate_priority_score(impact, effort),
    })


def rank_issues(issues: list[Issue]) -> list[Issue]:
    return sorted(issues, key=issue_rank_key)


class ScoringEngine:
    """
    Merges the issue lists of every analysis engine, scores and ranks them.
    Runs AFTER all analysis engines complete.
    """

    ENGINE_NAME = "scoring"

    def score(self, engine_results: list[EngineResult]) -> list[Issue]:
        issues: list[Issue] = []
        for result in engine_results:
            if result.status == EngineStatus.FAILED:
                logger.warning(
                    "Skipping failed engine",
                    engine=result.engine_name,
                    error=result.error_message,
                )
                continue
            issues.extend(result.issues)

        ranked = rank_issues([score_issue(issue) for issue in issues])
        by_type = Counter(issue.type.value for issue in ranked)
        logger.info(
            "Issues scored",
            total=len(ranked),
            engines=len(engine_results),
            top_types=dict(by_type.most_common(5)),
        )
        return ranked
