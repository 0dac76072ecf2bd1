from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup, Tag

from contact_finder.models.search import ExtractedContact, ExtractionMethod, SocialProfile
from contact_finder.research_core.extract.patterns import (
    clean_person_name,
    email_matches_name,
    find_emails,
    find_phone,
    find_social_profiles,
    find_title,
    is_generic_email,
    parse_social_url,
)
from contact_finder.research_core.extract.scoring import rule_confidence

BYLINE_CLASS = re.compile(r"(byline|author|writer|contributor)", re.IGNORECASE)
BIO_CLASS = re.compile(r"(author[-_]?bio|bio|about[-_]?(the[-_]?)?author|profile|author[-_]?description)", re.IGNORECASE)
TEXT_BYLINE = re.compile(r"\bBy\s+([A-Z][a-zA-Z'’.-]+(?:\s[A-Z][a-zA-Z'’.-]+){1,3})")
MAX_BLOCK_CHARS = 1500


@dataclass(slots=True)
class _Candidate:
    name: str
    source: str
    block: Tag | None = None
    title: str | None = None
    email: str | None = None
    bio: str | None = None
    socials: list[SocialProfile] = field(default_factory=list)


def _text(node: Tag | None) -> str:
    if node is None:
        return ""
    return re.sub(r"\s+", " ", node.get_text(" ", strip=True)).strip()


def _iter_json_ld(soup: BeautifulSoup) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            payload = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        stack = payload if isinstance(payload, list) else [payload]
        while stack:
            node = stack.pop(0)
            if isinstance(node, dict):
                items.append(node)
                graph = node.get("@graph")
                if isinstance(graph, list):
                    stack.extend(graph)
    return items


def _author_block(node: Tag) -> Tag:
    """Closest ancestor that looks like an author box, bounded in size."""
    block = node
    for parent in node.parents:
        if not isinstance(parent, Tag) or parent.name in ("body", "html", "[document]"):
            break
        if len(_text(parent)) > MAX_BLOCK_CHARS:
            break
        block = parent
        classes = " ".join(parent.get("class") or []) + " " + str(parent.get("id") or "")
        if BYLINE_CLASS.search(classes) or BIO_CLASS.search(classes):
            break
    return block


class RuleBasedExtractor:
    """Byline and structured-data heuristics over page HTML."""

    def __init__(self, *, max_candidates: int = 10):
        self.max_candidates = max_candidates

    def _collect(self, soup: BeautifulSoup) -> list[_Candidate]:
        candidates: list[_Candidate] = []

        for item in _iter_json_ld(soup):
            authors = item.get("author")
            if authors is None:
                continue
            for author in authors if isinstance(authors, list) else [authors]:
                if isinstance(author, str):
                    author = {"name": author}
                if not isinstance(author, dict) or author.get("@type") == "Organization":
                    continue
                name = clean_person_name(str(author.get("name", "")))
                if not name:
                    continue
                same_as = author.get("sameAs") or []
                if isinstance(same_as, str):
                    same_as = [same_as]
                email = str(author.get("email", "")).replace("mailto:", "").strip() or None
                candidates.append(
                    _Candidate(
                        name=name,
                        source="json_ld",
                        title=str(author.get("jobTitle") or "").strip() or None,
                        email=email.lower() if email else None,
                        bio=str(author.get("description") or "").strip() or None,
                        socials=find_social_profiles([str(u) for u in same_as]),
                    )
                )

        for attrs in ({"name": "author"}, {"property": "article:author"}, {"name": "parsely-author"}):
            for meta in soup.find_all("meta", attrs=attrs):
                content = str(meta.get("content") or "")
                if content.startswith("http"):
                    continue
                for part in re.split(r"\s*(?:,|\band\b|&)\s*", content):
                    name = clean_person_name(part)
                    if name:
                        candidates.append(_Candidate(name=name, source="meta"))

        for link in soup.find_all("a", attrs={"rel": "author"}):
            name = clean_person_name(_text(link))
            if name:
                candidates.append(_Candidate(name=name, source="rel_author", block=_author_block(link)))

        for node in soup.find_all(attrs={"class": BYLINE_CLASS}):
            if not isinstance(node, Tag) or len(_text(node)) > 200:
                continue
            name = clean_person_name(_text(node))
            if name:
                candidates.append(_Candidate(name=name, source="byline", block=_author_block(node)))
        for node in soup.find_all(attrs={"itemprop": "author"}):
            name = clean_person_name(_text(node.find(attrs={"itemprop": "name"}) or node))
            if name:
                candidates.append(_Candidate(name=name, source="byline", block=_author_block(node)))

        if not candidates:
            body_text = _text(soup.body or soup)[:3000]
            for match in TEXT_BYLINE.finditer(body_text):
                name = clean_person_name(match.group(1))
                if name:
                    candidates.append(_Candidate(name=name, source="text"))

        return candidates

    def _merge_by_name(self, candidates: list[_Candidate]) -> list[_Candidate]:
        merged: dict[str, _Candidate] = {}
        source_rank = ["json_ld", "meta", "rel_author", "byline", "text"]
        for cand in candidates:
            key = cand.name.lower()
            existing = merged.get(key)
            if existing is None:
                merged[key] = cand
                continue
            if source_rank.index(cand.source) < source_rank.index(existing.source):
                existing.source = cand.source
            existing.block = existing.block or cand.block
            existing.title = existing.title or cand.title
            existing.email = existing.email or cand.email
            existing.bio = existing.bio or cand.bio
            known = {p.url for p in existing.socials}
            existing.socials.extend(p for p in cand.socials if p.url not in known)
        return list(merged.values())[: self.max_candidates]

    def _enrich(self, cand: _Candidate, soup: BeautifulSoup, page_emails: list[str], single: bool) -> None:
        block = cand.block
        if block is None:
            for node in soup.find_all(string=re.compile(re.escape(cand.name))):
                if isinstance(node.parent, Tag) and node.parent.name not in ("script", "style", "title", "meta"):
                    block = _author_block(node.parent)
                    break
            cand.block = block
        block_text = _text(block)

        if not cand.title and block_text:
            cand.title = find_title(block_text.replace(cand.name, " "))

        if not cand.email:
            block_emails: list[str] = []
            if block is not None:
                for link in block.find_all("a", href=True):
                    href = str(link["href"])
                    if href.lower().startswith("mailto:"):
                        block_emails.extend(find_emails(href[7:].split("?", 1)[0]))
                block_emails.extend(find_emails(block_text))
            personal = [e for e in block_emails if not is_generic_email(e)]
            named = [e for e in personal + page_emails if email_matches_name(e, cand.name)]
            if named:
                cand.email = named[0]
            elif personal:
                cand.email = personal[0]
            elif single:
                fallback = [e for e in page_emails if not is_generic_email(e)]
                cand.email = fallback[0] if len(fallback) == 1 else None

        if block is not None:
            known = {p.url for p in cand.socials}
            for link in block.find_all("a", href=True):
                profile = parse_social_url(str(link["href"]))
                if profile and profile.url not in known:
                    cand.socials.append(profile)
                    known.add(profile.url)

        if not cand.bio:
            bio_node = block.find(attrs={"class": BIO_CLASS}) if block is not None else None
            if bio_node is None:
                bio_node = soup.find(attrs={"class": BIO_CLASS})
                if bio_node is not None and cand.name not in _text(bio_node):
                    bio_node = None
            bio = _text(bio_node)
            if bio and bio != cand.name and len(bio) > 20:
                cand.bio = bio[:1000]

    def extract(self, html: str, *, source_url: str | None = None, outlet: str | None = None) -> list[ExtractedContact]:
        soup = BeautifulSoup(html or "", "html.parser")
        candidates = self._merge_by_name(self._collect(soup))
        if not candidates:
            return []

        page_emails: list[str] = []
        for link in soup.find_all("a", href=True):
            href = str(link["href"])
            if href.lower().startswith("mailto:"):
                page_emails.extend(e for e in find_emails(href[7:].split("?", 1)[0]) if e not in page_emails)

        contacts: list[ExtractedContact] = []
        single = len(candidates) == 1
        for cand in candidates:
            self._enrich(cand, soup, page_emails, single)
            contact = ExtractedContact(
                name=cand.name,
                title=cand.title,
                bio=cand.bio,
                email=cand.email,
                phone=find_phone(_text(cand.block)) if cand.block is not None else None,
                outlet=outlet,
                social_profiles=cand.socials,
                extraction_method=ExtractionMethod.RULE_BASED,
                source_url=source_url,
                metadata={"rule_source": cand.source},
            )
            contact.confidence_score = rule_confidence(cand.source, contact)
            contacts.append(contact)
        return contacts
