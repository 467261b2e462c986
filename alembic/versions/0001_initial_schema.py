"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _run_fk() -> sa.Column:
    return sa.Column("run_id", sa.Uuid(), sa.ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "crawl_runs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("max_pages", sa.Integer(), nullable=False),
        sa.Column("max_depth", sa.Integer(), nullable=False),
        sa.Column("respect_robots", sa.Boolean(), nullable=False),
        sa.Column("include_external", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("progress", sa.Float(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_crawl_runs_domain_status", "crawl_runs", ["domain", "status"])
    op.create_index("ix_crawl_runs_created_at", "crawl_runs", ["created_at"])

    op.create_table(
        "run_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _run_fk(),
        sa.Column("step", sa.String(50), nullable=False),
        sa.Column("level", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_run_events_run_id", "run_events", ["run_id", "id"])

    op.create_table(
        "pages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _run_fk(),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("content_type", sa.String(255), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("load_time_ms", sa.Float(), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False),
        sa.Column("redirect_url", sa.String(2048), nullable=True),
        sa.Column("redirect_count", sa.Integer(), nullable=False),
        sa.Column("headers", JSONType, nullable=False),
        sa.Column("robots_meta", sa.String(255), nullable=True),
        sa.Column("canonical_url", sa.String(2048), nullable=True),
        sa.Column("is_indexable", sa.Boolean(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.UniqueConstraint("run_id", "url", name="uq_pages_run_url"),
    )
    op.create_index("ix_pages_run_id_seq", "pages", ["run_id", "seq"])

    op.create_table(
        "page_contents",
        sa.Column("page_id", sa.Uuid(), sa.ForeignKey("pages.id", ondelete="CASCADE"), primary_key=True),
        _run_fk(),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("title_length", sa.Integer(), nullable=False),
        sa.Column("meta_description", sa.Text(), nullable=False),
        sa.Column("meta_description_length", sa.Integer(), nullable=False),
        sa.Column("h1", sa.Text(), nullable=False),
        *[sa.Column(f"h{level}_count", sa.Integer(), nullable=False) for level in range(1, 7)],
        sa.Column("word_count", sa.Integer(), nullable=False),
        sa.Column("internal_links_count", sa.Integer(), nullable=False),
        sa.Column("external_links_count", sa.Integer(), nullable=False),
        sa.Column("image_count", sa.Integer(), nullable=False),
        sa.Column("images_without_alt", sa.Integer(), nullable=False),
        sa.Column("keyword_density", JSONType, nullable=False),
        sa.Column("main_keywords", JSONType, nullable=False),
        sa.Column("structured_data_types", JSONType, nullable=False),
    )
    op.create_index("ix_page_contents_run_id", "page_contents", ["run_id"])

    op.create_table(
        "links",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _run_fk(),
        sa.Column("source_page_id", sa.Uuid(), sa.ForeignKey("pages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("target_url", sa.String(2048), nullable=False),
        sa.Column("anchor_text", sa.Text(), nullable=False),
        sa.Column("link_type", sa.String(20), nullable=False),
        sa.Column("is_follow", sa.Boolean(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
    )
    op.create_index("ix_links_run_id", "links", ["run_id"])
    op.create_index("ix_links_source_page_id", "links", ["source_page_id"])

    op.create_table(
        "images",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _run_fk(),
        sa.Column("page_id", sa.Uuid(), sa.ForeignKey("pages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("src", sa.String(2048), nullable=False),
        sa.Column("alt", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("loading", sa.String(20), nullable=False),
        sa.Column("is_lazy", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_images_run_id", "images", ["run_id"])

    op.create_table(
        "robots_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _run_fk(),
        sa.Column("robots_url", sa.String(2048), nullable=False),
        sa.Column("is_accessible", sa.Boolean(), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("sitemap_urls", JSONType, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )

    op.create_table(
        "sitemap_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _run_fk(),
        sa.Column("sitemap_url", sa.String(2048), nullable=False),
        sa.Column("total_urls", sa.Integer(), nullable=False),
        sa.Column("valid_urls", sa.Integer(), nullable=False),
        sa.Column("entries", JSONType, nullable=False),
    )

    op.create_table(
        "fetch_failures",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _run_fk(),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False),
    )

    op.create_table(
        "issues",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _run_fk(),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("type", sa.String(60), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("recommendation", sa.Text(), nullable=False),
        sa.Column("page_id", sa.Uuid(), nullable=True),
        sa.Column("page_url", sa.String(2048), nullable=True),
        sa.Column("impact_score", sa.Integer(), nullable=False),
        sa.Column("effort_score", sa.Integer(), nullable=False),
        sa.Column("priority_score", sa.Float(), nullable=False),
        sa.Column("data", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_issues_run_id_priority", "issues", ["run_id", "priority_score"])
    op.create_index("ix_issues_run_id_severity", "issues", ["run_id", "severity"])
    op.create_index("ix_issues_run_id_category", "issues", ["run_id", "category"])

    op.create_table(
        "content_clusters",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _run_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("topic", sa.String(255), nullable=False),
        sa.Column("page_ids", JSONType, nullable=False),
        sa.Column("page_urls", JSONType, nullable=False),
        sa.Column("page_count", sa.Integer(), nullable=False),
        sa.Column("opportunity_level", sa.String(20), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
    )
    op.create_index("ix_content_clusters_run_id", "content_clusters", ["run_id"])


def downgrade() -> None:
    for table in (
        "content_clusters",
        "issues",
        "fetch_failures",
        "sitemap_records",
        "robots_records",
        "images",
        "links",
        "page_contents",
        "pages",
        "run_events",
        "crawl_runs",
    ):
        op.drop_table(table)
