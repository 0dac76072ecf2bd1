from contact_finder.tools.web_utils import (
    clean_content,
    domain_matches,
    estimate_authority,
    extract_domain,
    is_valid_url,
    jaccard_similarity,
    normalize_text,
)


def test_url_helpers():
    assert is_valid_url("https://www.reuters.com/world") is True
    assert is_valid_url("mailto:desk@reuters.com") is False
    assert extract_domain("https://www.BBC.co.uk/news") == "bbc.co.uk"


def test_estimate_authority_prefers_known_outlets():
    assert estimate_authority("https://uk.reuters.com/a") == 0.95
    assert estimate_authority("https://data.census.gov/x") == 0.8
    assert estimate_authority("https://someblog.net/post") == 0.5


def test_domain_matches_subdomains_only():
    assert domain_matches("blog.reuters.com", ["www.reuters.com"]) is True
    assert domain_matches("notreuters.com", ["reuters.com"]) is False


def test_clean_content_collapses_whitespace_and_truncates():
    assert clean_content("  a \n\n b\t c ") == "a b c"
    assert clean_content("x" * 20, max_length=5) == "xxxxx..."


def test_text_similarity_helpers():
    assert normalize_text("Jane SMITH, Tech-Daily!") == "jane smith tech daily"
    assert jaccard_similarity({"a", "b"}, {"b", "c"}) == 1 / 3
    assert jaccard_similarity(set(), set()) == 1.0
