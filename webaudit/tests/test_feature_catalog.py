from webaudit.features.catalog.features import (
    FEATURE_CATEGORIES,
    FEATURES,
    feature_display_name,
    get_core_features,
    get_feature_by_id,
    get_features_by_category,
    unknown_feature_ids,
    validate_feature_ids,
)
from webaudit.models.feature import FeatureCategory


def test_feature_ids_are_unique():
    ids = [f.id for f in FEATURES]
    assert len(ids) == len(set(ids))


def test_every_category_has_a_display_name():
    assert set(FEATURE_CATEGORIES) == set(FeatureCategory)
    for category in FeatureCategory:
        assert get_features_by_category(category)


def test_core_features_include_basic_audit():
    core = {f.id for f in get_core_features()}
    assert "basic_audit" in core
    assert "single_page_crawl" in core
    assert "full_site_crawl" not in core


def test_lookup_by_id():
    feature = get_feature_by_id("full_site_crawl")
    assert feature is not None
    assert feature.category == FeatureCategory.CRAWLING
    assert get_feature_by_id("teleport") is None


def test_unknown_ids_preserve_order():
    assert unknown_feature_ids(["seo_structure", "zzz", "basic_audit", "aaa"]) == ["zzz", "aaa"]
    assert validate_feature_ids(["seo_structure", "image_scan"]) is True
    assert validate_feature_ids(["seo_structure", "nope"]) is False


def test_display_name_falls_back_to_id():
    assert feature_display_name("seo_structure") == "SEO & Structure"
    assert feature_display_name("custom_feature") == "custom_feature"
