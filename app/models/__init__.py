"""SQLAlchemy models."""

from app.models.base import Base
from app.models.customer import Customer
from app.models.ga4_property import GA4Property
from app.models.google_ads_account import GoogleAdsAccount
from app.models.oauth_token import OAuthToken, TokenScope
from app.models.recommendation import (
    FunnelStage,
    RecommendationSeverity,
    RecommendationStatus,
    TrackingRecommendation,
)
from app.models.site_credential import SiteCredential
from app.models.site_scan import ScanPage, SiteScan, SiteScanStatus
from app.models.tenant import Tenant
from app.models.tracking import (
    Destination,
    HealthStatus,
    SyncState,
    Tracking,
    TrackingStatus,
    TrackingType,
)

__all__ = [
    # Base
    "Base",
    # Tenancy
    "Tenant",
    "Customer",
    # Google resources
    "OAuthToken",
    "TokenScope",
    "GA4Property",
    "GoogleAdsAccount",
    # Trackings
    "Tracking",
    "TrackingType",
    "TrackingStatus",
    "Destination",
    "SyncState",
    "HealthStatus",
    # Site scans
    "SiteScan",
    "SiteScanStatus",
    "ScanPage",
    "TrackingRecommendation",
    "RecommendationSeverity",
    "RecommendationStatus",
    "FunnelStage",
    "SiteCredential",
]
