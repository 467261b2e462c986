"""
Content clustering.

Pages are grouped by the first significant token of their title (lowercased,
punctuation stripped, longer than 3 characters). Singleton groups are
dropped; the rest are tagged with an opportunity level driven by size.
"""

from __future__ import annotations

import structlog

from sitescope.engines.base import ContentCluster, Corpus, OpportunityLevel
from sitescope.engines.crawler.extractor import tokenize

logger = structlog.get_logger(__name__)

HIGH_OPPORTUNITY_SIZE = 10
MEDIUM_OPPORTUNITY_SIZE = 5


def opportunity_level(page_count: int) -> OpportunityLevel:
    if page_count >= HIGH_OPPORTUNITY_SIZE:
        return OpportunityLevel.HIGH
    if page_count >= MEDIUM_OPPORTUNITY_SIZE:
        return OpportunityLevel.MEDIUM
    return OpportunityLevel.LOW


def cluster_token(title: str) -> str | None:
    tokens = tokenize(title)
    return tokens[0] if tokens else None


class ClusteringEngine:

    ENGINE_NAME = "clustering"

    def cluster(self, corpus: Corpus) -> list[ContentCluster]:
        groups: dict[str, ContentCluster] = {}
        for page, content in corpus.html_pages():
            token = cluster_token(content.title)
            if token is None:
                continue
            cluster = groups.setdefault(
                token,
                ContentCluster(run_id=corpus.run.id, name=token, topic=token.capitalize()),
            )
            cluster.page_ids.append(page.id)
            cluster.page_urls.append(page.url)

        clusters = []
        for cluster in groups.values():
            cluster.page_count = len(cluster.page_ids)
            if cluster.page_count <= 1:
                continue
            cluster.opportunity_level = opportunity_level(cluster.page_count)
            clusters.append(cluster)

        clusters.sort(key=lambda c: (-c.page_count, c.name))
        logger.debug("Clusters built", run_id=str(corpus.run.id), clusters=len(clusters))
        return clusters
