"""
Database Models - Relational schema for crawl runs and their analysis.

Design decisions:
- UUID primary keys (no sequential int exposure)
- JSON columns (JSONB on PostgreSQL) for headers, payloads and keyword maps
- One page per (run, url): the unique constraint backs crawl dedup
- Pages and their children are append-only; issues and clusters are
  replaced wholesale per scoring pass
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sitescope.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ─────────────────────────────────────────────
# Mixins
# ─────────────────────────────────────────────

class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)


# ─────────────────────────────────────────────
# Runs
# ─────────────────────────────────────────────

class CrawlRunRecord(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One crawl + analysis execution."""
    __tablename__ = "crawl_runs"

    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    max_pages: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    max_depth: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    respect_robots: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    include_external: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    # pending | running | completed | failed
    progress: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    pages: Mapped[list["PageRow"]] = relationship("PageRow", back_populates="run", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_crawl_runs_domain_status", "domain", "status"),
        Index("ix_crawl_runs_created_at", "created_at"),
    )


class RunEventRow(Base):
    __tablename__ = "run_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    step: Mapped[str] = mapped_column(String(50), nullable=False)
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_run_events_run_id", "run_id", "id"),
    )


# ─────────────────────────────────────────────
# Corpus
# ─────────────────────────────────────────────

class PageRow(Base, UUIDPrimaryKeyMixin):
    """A single fetched URL within a run."""
    __tablename__ = "pages"

    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    load_time_ms: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    depth: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    redirect_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    redirect_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    headers: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    robots_meta: Mapped[str | None] = mapped_column(String(255), nullable=True)
    canonical_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    is_indexable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Insertion order; crawl order is part of the corpus contract
    seq: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    run: Mapped[CrawlRunRecord] = relationship("CrawlRunRecord", back_populates="pages")

    __table_args__ = (
        UniqueConstraint("run_id", "url", name="uq_pages_run_url"),
        Index("ix_pages_run_id_seq", "run_id", "seq"),
    )


class PageContentRow(Base):
    __tablename__ = "page_contents"

    page_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("pages.id", ondelete="CASCADE"), primary_key=True)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(Text, default="", nullable=False)
    title_length: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    meta_description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    meta_description_length: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    h1: Mapped[str] = mapped_column(Text, default="", nullable=False)
    h1_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    h2_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    h3_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    h4_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    h5_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    h6_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    internal_links_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    external_links_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    image_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    images_without_alt: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    keyword_density: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    main_keywords: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    structured_data_types: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)

    __table_args__ = (
        Index("ix_page_contents_run_id", "run_id"),
    )


class LinkRow(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    source_page_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False)
    target_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    anchor_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    link_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_follow: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_links_run_id", "run_id"),
        Index("ix_links_source_page_id", "source_page_id"),
    )


class ImageRow(Base):
    __tablename__ = "images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    page_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False)
    src: Mapped[str] = mapped_column(String(2048), nullable=False)
    alt: Mapped[str] = mapped_column(Text, default="", nullable=False)
    title: Mapped[str] = mapped_column(Text, default="", nullable=False)
    loading: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    is_lazy: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_images_run_id", "run_id"),
    )


class RobotsRow(Base):
    __tablename__ = "robots_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    robots_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    is_accessible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    sitemap_urls: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class SitemapRow(Base):
    __tablename__ = "sitemap_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    sitemap_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    total_urls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    valid_urls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    entries: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)


class FetchFailureRow(Base):
    __tablename__ = "fetch_failures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    depth: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ─────────────────────────────────────────────
# Analysis output
# ─────────────────────────────────────────────

class IssueRow(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "issues"

    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    type: Mapped[str] = mapped_column(String(60), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    recommendation: Mapped[str] = mapped_column(Text, default="", nullable=False)
    page_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    page_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    impact_score: Mapped[int] = mapped_column(Integer, nullable=False)
    effort_score: Mapped[int] = mapped_column(Integer, nullable=False)
    priority_score: Mapped[float] = mapped_column(Float, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_issues_run_id_priority", "run_id", "priority_score"),
        Index("ix_issues_run_id_severity", "run_id", "severity"),
        Index("ix_issues_run_id_category", "run_id", "category"),
    )


class ContentClusterRow(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "content_clusters"

    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    page_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    page_urls: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    page_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    opportunity_level: Mapped[str] = mapped_column(String(20), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_content_clusters_run_id", "run_id"),
    )
