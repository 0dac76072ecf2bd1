from __future__ import annotations

import re
from urllib.parse import urlparse

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+(?:['.][a-z0-9]+)*")

HIGH_AUTHORITY_DOMAINS = {
    "reuters.com": 0.95,
    "apnews.com": 0.95,
    "bbc.com": 0.95,
    "bbc.co.uk": 0.95,
    "nytimes.com": 0.9,
    "washingtonpost.com": 0.9,
    "wsj.com": 0.9,
    "theguardian.com": 0.9,
    "ft.com": 0.9,
    "bloomberg.com": 0.9,
    "cnn.com": 0.85,
    "npr.org": 0.85,
    "economist.com": 0.85,
    "techcrunch.com": 0.8,
    "theverge.com": 0.8,
    "wired.com": 0.8,
    "muckrack.com": 0.75,
    "linkedin.com": 0.6,
    "twitter.com": 0.5,
    "x.com": 0.5,
}


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return result.scheme in ("http", "https") and bool(result.netloc)


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse whitespace and trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def extract_domain(url: str) -> str:
    """Lowercased host without a leading ``www.``."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return url.lower()
    return host[4:] if host.startswith("www.") else host


def estimate_authority(url: str) -> float:
    domain = extract_domain(url)
    for known, score in HIGH_AUTHORITY_DOMAINS.items():
        if domain == known or domain.endswith("." + known):
            return score
    if domain.endswith((".gov", ".edu")):
        return 0.8
    if domain.endswith(".org"):
        return 0.6
    return 0.5 if domain else 0.0


def domain_matches(domain: str, patterns: list[str]) -> bool:
    domain = domain.lower()
    for pattern in patterns:
        pattern = pattern.lower().strip()
        if pattern.startswith("www."):
            pattern = pattern[4:]
        if pattern and (domain == pattern or domain.endswith("." + pattern)):
            return True
    return False


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    return " ".join(_TOKEN_PATTERN.findall((text or "").lower()))


def tokenize(text: str) -> set[str]:
    return set(_TOKEN_PATTERN.findall((text or "").lower()))


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    if not a and not b:
        return 1.0
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)
