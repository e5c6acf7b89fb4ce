"""
webaudit/features/catalog/features.py

Static feature catalog for the audit platform.

The catalog is only used to validate plan configuration (admin plan edits,
seeding). Runtime access decisions look at a plan's feature list alone.
"""

from typing import Dict, Iterable, List, Optional

from webaudit.models.feature import Feature, FeatureCategory


FEATURES: List[Feature] = [
    Feature(
        id="basic_audit",
        name="Basic Audit",
        description="Baseline audit summary included with every plan",
        category=FeatureCategory.CRAWLING,
        is_core=True,
    ),
    # Website crawling
    Feature(
        id="single_page_crawl",
        name="Single Page Crawl",
        description="Analyze one specific page",
        category=FeatureCategory.CRAWLING,
        is_core=True,
    ),
    Feature(
        id="full_site_crawl",
        name="Full Site Crawl",
        description="Scan and audit all accessible pages",
        category=FeatureCategory.CRAWLING,
    ),
    Feature(
        id="hidden_urls_detection",
        name="Hidden URLs Detection",
        description="Identify unlinked or orphan pages",
        category=FeatureCategory.CRAWLING,
    ),
    # Content & brand insights
    Feature(
        id="brand_consistency_check",
        name="Brand Consistency Check",
        description="Ensure colors, fonts, and messaging align with brand guidelines",
        category=FeatureCategory.CONTENT,
    ),
    Feature(
        id="grammar_content_analysis",
        name="Grammar & Content Analysis",
        description="Check for spelling, grammar, readability, and tone",
        category=FeatureCategory.CONTENT,
        is_core=True,
    ),
    Feature(
        id="seo_structure",
        name="SEO & Structure",
        description="Validate meta tags, heading hierarchy, schema markup, and keyword usage",
        category=FeatureCategory.CONTENT,
    ),
    # Security & compliance
    Feature(
        id="stripe_key_detection",
        name="Stripe Public Key Detection",
        description="Identify exposed API keys",
        category=FeatureCategory.SECURITY,
    ),
    Feature(
        id="google_tags_audit",
        name="Google Tags & Tracking Audit",
        description="Detect Google Analytics, Tag Manager, and third-party scripts",
        category=FeatureCategory.SECURITY,
    ),
    # Media & assets
    Feature(
        id="image_scan",
        name="On-Site Image Scan",
        description="Check alt tags, resolution, compression, and broken images",
        category=FeatureCategory.MEDIA,
        is_core=True,
    ),
    Feature(
        id="link_scanner",
        name="Link Scanner",
        description="Validate internal/external links and detect broken redirects",
        category=FeatureCategory.MEDIA,
        is_core=True,
    ),
    Feature(
        id="social_share_preview",
        name="Social Share Preview",
        description="Preview how the site appears on Twitter, LinkedIn, and Facebook",
        category=FeatureCategory.MEDIA,
    ),
    Feature(
        id="broken_links_check",
        name="Broken Links Check",
        description="Find and report broken internal and external links",
        category=FeatureCategory.MEDIA,
        is_core=True,
    ),
    # Technical & performance
    Feature(
        id="performance_metrics",
        name="Performance Metrics",
        description="Page load time, Core Web Vitals, resource optimization",
        category=FeatureCategory.TECHNICAL,
        is_core=True,
    ),
    Feature(
        id="ui_ux_quality_check",
        name="UI/UX Quality Check",
        description="Detect layout issues, responsiveness, and accessibility gaps",
        category=FeatureCategory.TECHNICAL,
    ),
    Feature(
        id="technical_fix_recommendations",
        name="Technical Fix Recommendations",
        description="Actionable suggestions for speed, accessibility, and SEO",
        category=FeatureCategory.TECHNICAL,
    ),
    Feature(
        id="technical_analysis",
        name="Technical Analysis",
        description="Code quality, structure, and best-practice audit",
        category=FeatureCategory.TECHNICAL,
    ),
    Feature(
        id="accessibility_audit",
        name="Accessibility Audit",
        description="Comprehensive accessibility compliance checking",
        category=FeatureCategory.TECHNICAL,
    ),
    Feature(
        id="mobile_responsiveness",
        name="Mobile Responsiveness",
        description="Test and validate mobile-friendly design",
        category=FeatureCategory.TECHNICAL,
    ),
    Feature(
        id="page_speed_analysis",
        name="Page Speed Analysis",
        description="Detailed page loading performance analysis",
        category=FeatureCategory.TECHNICAL,
        is_core=True,
    ),
]

FEATURE_CATEGORIES: Dict[FeatureCategory, str] = {
    FeatureCategory.CRAWLING: "Website Crawling",
    FeatureCategory.CONTENT: "Content & Brand Insights",
    FeatureCategory.SECURITY: "Security & Compliance",
    FeatureCategory.MEDIA: "Media & Asset Analysis",
    FeatureCategory.TECHNICAL: "Technical & Performance",
}

_FEATURES_BY_ID: Dict[str, Feature] = {f.id: f for f in FEATURES}


def get_feature_by_id(feature_id: str) -> Optional[Feature]:
    return _FEATURES_BY_ID.get(feature_id)


def get_features_by_category(category: FeatureCategory) -> List[Feature]:
    return [f for f in FEATURES if f.category == category]


def get_core_features() -> List[Feature]:
    return [f for f in FEATURES if f.is_core]


def unknown_feature_ids(feature_ids: Iterable[str]) -> List[str]:
    """Return ids not present in the catalog, preserving input order."""
    return [fid for fid in feature_ids if fid not in _FEATURES_BY_ID]


def validate_feature_ids(feature_ids: Iterable[str]) -> bool:
    return not unknown_feature_ids(feature_ids)


def feature_display_name(feature_id: str) -> str:
    feature = get_feature_by_id(feature_id)
    return feature.name if feature else feature_id
