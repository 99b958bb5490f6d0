"""Initial OneClickTag schema: tenants, customers, Google resources, trackings and site scans.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TRACKING_TYPES = (
    "BUTTON_CLICK", "LINK_CLICK", "PAGE_VIEW", "ELEMENT_VISIBILITY", "FORM_SUBMIT",
    "FORM_START", "FORM_ABANDON", "ADD_TO_CART", "REMOVE_FROM_CART", "ADD_TO_WISHLIST",
    "VIEW_CART", "CHECKOUT_START", "CHECKOUT_STEP", "PURCHASE", "PRODUCT_VIEW",
    "PHONE_CALL_CLICK", "EMAIL_CLICK", "DOWNLOAD", "DEMO_REQUEST", "SIGNUP",
    "SCROLL_DEPTH", "TIME_ON_PAGE", "VIDEO_PLAY", "VIDEO_COMPLETE", "SITE_SEARCH",
    "FILTER_USE", "TAB_SWITCH", "ACCORDION_EXPAND", "MODAL_OPEN", "SOCIAL_SHARE",
    "SOCIAL_CLICK", "PDF_DOWNLOAD", "FILE_DOWNLOAD", "NEWSLETTER_SIGNUP", "CUSTOM_EVENT",
)
TRACKING_STATUSES = ("PENDING", "CREATING", "ACTIVE", "FAILED", "PAUSED", "SYNCING")
SYNC_STATES = ("NOT_REQUIRED", "PENDING", "SUCCEEDED", "FAILED", "SKIPPED")
HEALTH_STATUSES = (
    "HEALTHY", "MISSING_TRIGGER", "MISSING_TAG", "MISSING_CONVERSION", "WORKSPACE_GONE", "UNCHECKED",
)
SCAN_STATUSES = (
    "QUEUED", "DISCOVERING", "CRAWLING", "NICHE_DETECTED", "AWAITING_CONFIRMATION",
    "DEEP_CRAWLING", "ANALYZING", "COMPLETED", "FAILED", "CANCELLED",
)
SEVERITIES = ("CRITICAL", "IMPORTANT", "RECOMMENDED", "OPTIONAL")
RECOMMENDATION_STATUSES = ("PENDING", "ACCEPTED", "REJECTED", "CREATED")
FUNNEL_STAGES = ("top", "middle", "bottom")
TOKEN_SCOPES = ("gtm", "ads", "ga4", "userinfo")

ENUMS = {
    "tracking_type": TRACKING_TYPES,
    "tracking_status": TRACKING_STATUSES,
    "sync_state": SYNC_STATES,
    "health_status": HEALTH_STATUSES,
    "site_scan_status": SCAN_STATUSES,
    "recommendation_severity": SEVERITIES,
    "recommendation_status": RECOMMENDATION_STATUSES,
    "funnel_stage": FUNNEL_STAGES,
    "token_scope": TOKEN_SCOPES,
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def _tenant_fk(table: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ["tenant_id"],
        ["tenants.id"],
        name=op.f(f"fk_{table}_tenant_id_tenants"),
        ondelete="CASCADE",
    )


def _customer_fk(table: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ["customer_id"],
        ["customers.id"],
        name=op.f(f"fk_{table}_customer_id_customers"),
        ondelete="CASCADE",
    )


def _json(default: str) -> dict:
    return {"nullable": False, "server_default": default}


def upgrade() -> None:
    for name, values in ENUMS.items():
        quoted = ", ".join(f"'{v}'" for v in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({quoted})")

    # Tenants
    op.create_table(
        "tenants",
        *_base_columns(),
        sa.Column("external_org_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("gtm_account_id", sa.String(64), nullable=True),
        sa.Column("ga4_account_id", sa.String(64), nullable=True),
        sa.Column("ga4_shared_property_id", sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tenants")),
        sa.UniqueConstraint("external_org_id", name=op.f("uq_tenants_external_org_id")),
    )
    op.create_index(op.f("ix_tenants_external_org_id"), "tenants", ["external_org_id"], unique=False)

    # Customers
    op.create_table(
        "customers",
        *_base_columns(),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("website_url", sa.String(2048), nullable=True),
        sa.Column("google_account_id", sa.String(255), nullable=True),
        sa.Column("google_email", sa.String(255), nullable=True),
        sa.Column("connected_by", sa.String(255), nullable=True),
        sa.Column("gtm_account_id", sa.String(64), nullable=True),
        sa.Column("gtm_container_id", sa.String(64), nullable=True),
        sa.Column("gtm_container_name", sa.String(255), nullable=True),
        sa.Column("gtm_container_public_id", sa.String(32), nullable=True),
        sa.Column("gtm_workspace_id", sa.String(64), nullable=True),
        _tenant_fk("customers"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_customers")),
        sa.UniqueConstraint("tenant_id", "name", name=op.f("uq_customers_tenant_id")),
    )
    op.create_index(op.f("ix_customers_tenant_id"), "customers", ["tenant_id"], unique=False)

    # OAuth tokens
    op.create_table(
        "oauth_tokens",
        *_base_columns(),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False, server_default="google"),
        sa.Column("scope", _enum("token_scope"), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk("oauth_tokens"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_oauth_tokens")),
        sa.UniqueConstraint(
            "tenant_id", "user_id", "provider", "scope", name=op.f("uq_oauth_tokens_tenant_id")
        ),
    )
    op.create_index(op.f("ix_oauth_tokens_tenant_id"), "oauth_tokens", ["tenant_id"], unique=False)

    # GA4 properties
    op.create_table(
        "ga4_properties",
        *_base_columns(),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("property_id", sa.String(64), nullable=False),
        sa.Column("property_name", sa.String(255), nullable=True),
        sa.Column("measurement_id", sa.String(32), nullable=True),
        sa.Column("data_stream_id", sa.String(64), nullable=True),
        sa.Column("website_url", sa.String(2048), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _tenant_fk("ga4_properties"),
        _customer_fk("ga4_properties"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_ga4_properties")),
    )
    op.create_index(op.f("ix_ga4_properties_tenant_id"), "ga4_properties", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_ga4_properties_customer_id"), "ga4_properties", ["customer_id"], unique=False)

    # Google Ads accounts
    op.create_table(
        "google_ads_accounts",
        *_base_columns(),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("account_id", sa.String(32), nullable=False),
        sa.Column("account_name", sa.String(255), nullable=True),
        sa.Column("currency", sa.String(8), nullable=True),
        sa.Column("time_zone", sa.String(64), nullable=True),
        sa.Column("label_resource", sa.String(255), nullable=True),
        _tenant_fk("google_ads_accounts"),
        _customer_fk("google_ads_accounts"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_google_ads_accounts")),
        sa.UniqueConstraint(
            "customer_id", "account_id", name=op.f("uq_google_ads_accounts_customer_id")
        ),
    )
    op.create_index(
        op.f("ix_google_ads_accounts_tenant_id"), "google_ads_accounts", ["tenant_id"], unique=False
    )
    op.create_index(
        op.f("ix_google_ads_accounts_customer_id"), "google_ads_accounts", ["customer_id"], unique=False
    )

    # Trackings
    op.create_table(
        "trackings",
        *_base_columns(),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", _enum("tracking_type"), nullable=False),
        sa.Column("destinations", postgresql.JSONB(), **_json("[]")),
        sa.Column("selector", sa.Text(), nullable=True),
        sa.Column("url_pattern", sa.Text(), nullable=True),
        sa.Column("config", postgresql.JSONB(), **_json("{}")),
        sa.Column("ga4_event_name", sa.String(100), nullable=True),
        sa.Column("ga4_parameters", postgresql.JSONB(), **_json("{}")),
        sa.Column("ads_conversion_value", sa.Float(), nullable=True),
        sa.Column("status", _enum("tracking_status"), nullable=False, server_default="PENDING"),
        sa.Column("gtm_trigger_id", sa.String(64), nullable=True),
        sa.Column("gtm_tag_id_ga4", sa.String(64), nullable=True),
        sa.Column("gtm_tag_id_ads", sa.String(64), nullable=True),
        sa.Column("gtm_container_id", sa.String(64), nullable=True),
        sa.Column("gtm_workspace_id", sa.String(64), nullable=True),
        sa.Column("ads_account_id", sa.String(32), nullable=True),
        sa.Column("conversion_action_id", sa.String(64), nullable=True),
        sa.Column("ads_conversion_id", sa.String(64), nullable=True),
        sa.Column("ads_conversion_label", sa.String(128), nullable=True),
        sa.Column("gtm_sync_state", _enum("sync_state"), nullable=False, server_default="NOT_REQUIRED"),
        sa.Column("ads_sync_state", _enum("sync_state"), nullable=False, server_default="NOT_REQUIRED"),
        sa.Column("gtm_job_id", sa.String(255), nullable=True),
        sa.Column("ads_job_id", sa.String(255), nullable=True),
        sa.Column("health_status", _enum("health_status"), nullable=False, server_default="UNCHECKED"),
        sa.Column("last_health_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("sync_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk("trackings"),
        _customer_fk("trackings"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_trackings")),
    )
    op.create_index(op.f("ix_trackings_tenant_id"), "trackings", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_trackings_customer_id"), "trackings", ["customer_id"], unique=False)
    op.create_index(op.f("ix_trackings_status"), "trackings", ["status"], unique=False)

    # Site scans
    op.create_table(
        "site_scans",
        *_base_columns(),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("status", _enum("site_scan_status"), nullable=False, server_default="QUEUED"),
        sa.Column("website_url", sa.String(2048), nullable=False),
        sa.Column("max_pages", sa.Integer(), nullable=False, server_default="200"),
        sa.Column("max_depth", sa.Integer(), nullable=False, server_default="8"),
        sa.Column("url_queue", postgresql.JSONB(), **_json("[]")),
        sa.Column("crawled_urls", postgresql.JSONB(), **_json("[]")),
        sa.Column("phase1_pages_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("phase2_pages_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("phase1_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("phase2_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("session_cookies", postgresql.JSONB(), **_json("{}")),
        sa.Column("live_discovery", postgresql.JSONB(), **_json("{}")),
        sa.Column("total_urls_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_pages_scanned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("authenticated_pages_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("login_detected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("login_url", sa.String(2048), nullable=True),
        sa.Column("detected_niche", sa.String(64), nullable=True),
        sa.Column("niche_confidence", sa.Float(), nullable=True),
        sa.Column("niche_signals", postgresql.JSONB(), **_json("[]")),
        sa.Column("niche_sub_category", sa.String(128), nullable=True),
        sa.Column("confirmed_niche", sa.String(64), nullable=True),
        sa.Column("detected_technologies", postgresql.JSONB(), **_json("[]")),
        sa.Column("existing_tracking", postgresql.JSONB(), **_json("[]")),
        sa.Column("site_map", postgresql.JSONB(), **_json("{}")),
        sa.Column("ai_analysis_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("total_recommendations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recommendation_counts", postgresql.JSONB(), **_json("{}")),
        sa.Column("tracking_readiness_score", sa.Integer(), nullable=True),
        sa.Column("readiness_narrative", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk("site_scans"),
        _customer_fk("site_scans"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_site_scans")),
    )
    op.create_index(op.f("ix_site_scans_tenant_id"), "site_scans", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_site_scans_customer_id"), "site_scans", ["customer_id"], unique=False)
    op.create_index(op.f("ix_site_scans_status"), "site_scans", ["status"], unique=False)

    # Scan pages
    op.create_table(
        "scan_pages",
        *_base_columns(),
        sa.Column("scan_id", sa.UUID(), nullable=False),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("title", sa.String(512), nullable=True),
        sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("page_type", sa.String(32), nullable=False, server_default="other"),
        sa.Column("template_group", sa.String(512), nullable=True),
        sa.Column("has_form", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_cta", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_video", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_phone_link", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_email_link", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_download_link", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_authenticated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("importance_score", sa.Float(), nullable=True),
        sa.Column("meta_tags", postgresql.JSONB(), **_json("{}")),
        sa.Column("headings", postgresql.JSONB(), **_json("[]")),
        sa.Column("content_summary", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["scan_id"],
            ["site_scans.id"],
            name=op.f("fk_scan_pages_scan_id_site_scans"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_scan_pages")),
        sa.UniqueConstraint("scan_id", "url", name=op.f("uq_scan_pages_scan_id")),
    )
    op.create_index(op.f("ix_scan_pages_scan_id"), "scan_pages", ["scan_id"], unique=False)

    # Tracking recommendations
    op.create_table(
        "tracking_recommendations",
        *_base_columns(),
        sa.Column("scan_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tracking_type", _enum("tracking_type"), nullable=False),
        sa.Column("severity", _enum("recommendation_severity"), nullable=False),
        sa.Column("severity_reason", sa.Text(), nullable=True),
        sa.Column("status", _enum("recommendation_status"), nullable=False, server_default="PENDING"),
        sa.Column("selector", sa.Text(), nullable=True),
        sa.Column("selector_config", postgresql.JSONB(), **_json("{}")),
        sa.Column("selector_confidence", sa.Float(), nullable=True),
        sa.Column("url_pattern", sa.Text(), nullable=True),
        sa.Column("page_url", sa.String(2048), nullable=True),
        sa.Column("funnel_stage", _enum("funnel_stage"), nullable=False, server_default="middle"),
        sa.Column("element_context", postgresql.JSONB(), **_json("{}")),
        sa.Column("suggested_config", postgresql.JSONB(), **_json("{}")),
        sa.Column("suggested_ga4_event_name", sa.String(100), nullable=True),
        sa.Column("suggested_destinations", postgresql.JSONB(), **_json("[]")),
        sa.Column("ai_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tracking_id", sa.UUID(), nullable=True),
        sa.ForeignKeyConstraint(
            ["scan_id"],
            ["site_scans.id"],
            name=op.f("fk_tracking_recommendations_scan_id_site_scans"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["tracking_id"],
            ["trackings.id"],
            name=op.f("fk_tracking_recommendations_tracking_id_trackings"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tracking_recommendations")),
    )
    op.create_index(
        op.f("ix_tracking_recommendations_scan_id"), "tracking_recommendations", ["scan_id"], unique=False
    )
    op.create_index(
        op.f("ix_tracking_recommendations_severity"), "tracking_recommendations", ["severity"], unique=False
    )
    op.create_index(
        op.f("ix_tracking_recommendations_status"), "tracking_recommendations", ["status"], unique=False
    )

    # Site credentials
    op.create_table(
        "site_credentials",
        *_base_columns(),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("password", sa.Text(), nullable=False),
        sa.Column("login_url", sa.String(2048), nullable=True),
        sa.Column("auto_registered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk("site_credentials"),
        _customer_fk("site_credentials"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_site_credentials")),
        sa.UniqueConstraint(
            "tenant_id", "customer_id", "domain", name=op.f("uq_site_credentials_tenant_id")
        ),
    )
    op.create_index(op.f("ix_site_credentials_tenant_id"), "site_credentials", ["tenant_id"], unique=False)
    op.create_index(
        op.f("ix_site_credentials_customer_id"), "site_credentials", ["customer_id"], unique=False
    )


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table("site_credentials")
    op.drop_table("tracking_recommendations")
    op.drop_table("scan_pages")
    op.drop_table("site_scans")
    op.drop_table("trackings")
    op.drop_table("google_ads_accounts")
    op.drop_table("ga4_properties")
    op.drop_table("oauth_tokens")
    op.drop_table("customers")
    op.drop_table("tenants")

    # Drop enum types
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
