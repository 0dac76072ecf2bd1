from __future__ import annotations

import re
from urllib.parse import urlparse

from contact_finder.models.search import SocialProfile

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_PATTERN = re.compile(r"(?:\+?\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}")

GENERIC_EMAIL_PREFIXES = ("info@", "contact@", "hello@", "news@", "editor@", "support@", "admin@")
PLACEHOLDER_EMAIL_DOMAINS = ("example.com", "example.org", "domain.com", "email.com", "sentry.io")

JOURNALIST_INDICATORS = ("journalist", "reporter", "editor", "author", "writer", "correspondent")

PROFESSIONAL_TITLE_KEYWORDS = (
    "editor", "reporter", "journalist", "author", "writer", "correspondent", "analyst",
    "expert", "consultant", "researcher", "specialist", "senior", "lead", "chief",
    "director", "manager", "head", "columnist", "producer", "anchor", "contributor",
)

TITLE_PATTERN = re.compile(
    r"\b((?:senior|chief|lead|deputy|managing|executive|associate|staff|contributing|freelance|"
    r"political|technology|tech|business|health|science|sports|entertainment|investigative|"
    r"national|foreign|white house)?\s*"
    r"(?:[a-z]+\s)?"
    r"(?:editor|reporter|journalist|correspondent|writer|columnist|producer|anchor|contributor)"
    r"(?:\s(?:at|for)\s[A-Z][\w&.'-]*(?:\s[A-Z][\w&.'-]*){0,3})?)",
    re.IGNORECASE,
)

NON_PERSON_NAMES = frozenset(
    {
        "staff", "staff writer", "admin", "editorial team", "editorial staff", "news desk",
        "newsroom", "associated press", "reuters", "guest author", "web desk", "team",
    }
)

NAME_PATTERN = re.compile(r"^[A-Z][a-zA-Z'’.-]+(?:\s[A-Z][a-zA-Z'’.-]+){1,3}$")
BYLINE_PREFIX = re.compile(r"^\s*(?:by|written by|words by|posted by)\s*[:\-]?\s*", re.IGNORECASE)

SOCIAL_PLATFORMS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("twitter", re.compile(r"^(?:www\.)?(?:twitter|x)\.com/@?([A-Za-z0-9_]{1,15})/?$", re.IGNORECASE)),
    ("linkedin", re.compile(r"^(?:[a-z]{2,3}\.)?linkedin\.com/in/([A-Za-z0-9_-]+)/?$", re.IGNORECASE)),
    ("instagram", re.compile(r"^(?:www\.)?instagram\.com/([A-Za-z0-9_.]+)/?$", re.IGNORECASE)),
    ("facebook", re.compile(r"^(?:www\.|m\.)?facebook\.com/([A-Za-z0-9.]+)/?$", re.IGNORECASE)),
    ("youtube", re.compile(r"^(?:www\.)?youtube\.com/(?:@|c/|channel/|user/)([A-Za-z0-9_-]+)/?$", re.IGNORECASE)),
)

# share/intent links are not profiles
NON_PROFILE_HANDLES = frozenset({"share", "sharer", "intent", "home", "hashtag", "search", "login", "sharer.php"})


def is_valid_email(email: str) -> bool:
    email = (email or "").strip().lower()
    if not EMAIL_PATTERN.fullmatch(email):
        return False
    return not email.split("@", 1)[1].endswith(PLACEHOLDER_EMAIL_DOMAINS)


def is_generic_email(email: str) -> bool:
    return (email or "").strip().lower().startswith(GENERIC_EMAIL_PREFIXES)


def email_matches_name(email: str, name: str) -> bool:
    local = email.split("@", 1)[0].lower()
    parts = [p.lower() for p in re.split(r"\s+", name.strip()) if len(p) > 1]
    if not parts:
        return False
    return any(p.strip(".'’-") in local for p in parts)


def find_emails(text: str) -> list[str]:
    seen: list[str] = []
    for match in EMAIL_PATTERN.findall(text or ""):
        email = match.strip(".").lower()
        if is_valid_email(email) and email not in seen:
            seen.append(email)
    return seen


def find_phone(text: str) -> str | None:
    match = PHONE_PATTERN.search(text or "")
    return match.group(0).strip() if match else None


def find_title(text: str) -> str | None:
    match = TITLE_PATTERN.search(text or "")
    if not match:
        return None
    title = re.sub(r"\s+", " ", match.group(1)).strip(" ,.-|")
    return title[:1].upper() + title[1:] if title else None


def is_professional_title(title: str | None) -> bool:
    lowered = (title or "").lower()
    return any(keyword in lowered for keyword in PROFESSIONAL_TITLE_KEYWORDS)


def clean_person_name(raw: str) -> str | None:
    """Return a plausible person name from a byline fragment, else None."""
    name = BYLINE_PREFIX.sub("", raw or "")
    name = re.split(r"\s*(?:[|,•·]|\band\b|\bfor\b|\bat\b|\s-\s)\s*", name, maxsplit=1)[0]
    name = re.sub(r"\s+", " ", name).strip(" .:-")
    if not name or len(name) > 60 or name.lower() in NON_PERSON_NAMES:
        return None
    if any(ch.isdigit() for ch in name) or "@" in name:
        return None
    if not NAME_PATTERN.match(name):
        return None
    return name


def parse_social_url(url: str) -> SocialProfile | None:
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https", ""):
        return None
    host_path = f"{parsed.netloc}{parsed.path}".lower() if parsed.netloc else parsed.path.lower()
    host_path = host_path.rstrip("/") + "/" if host_path else host_path
    for platform, pattern in SOCIAL_PLATFORMS:
        match = pattern.match(host_path)
        if not match:
            continue
        handle = match.group(1)
        if handle.lower() in NON_PROFILE_HANDLES:
            return None
        canonical = f"https://{host_path.rstrip('/')}"
        if platform == "twitter":
            canonical = f"https://twitter.com/{handle}"
        return SocialProfile(platform=platform, url=canonical, handle=handle, verified=False)
    return None


def find_social_profiles(urls: list[str]) -> list[SocialProfile]:
    profiles: list[SocialProfile] = []
    seen: set[str] = set()
    for url in urls:
        profile = parse_social_url(url)
        if profile is None or profile.url.lower() in seen:
            continue
        seen.add(profile.url.lower())
        profiles.append(profile)
    return profiles
