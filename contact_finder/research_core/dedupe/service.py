"""Cross-source contact deduplication.

Rules run in priority order over the contacts not yet grouped, so the first
rule that matches a contact decides its group and no contact lands in two
groups. Input is put in a canonical order first, which makes the grouping and
the chosen representative independent of the order contacts arrive in.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

from contact_finder.config import settings
from contact_finder.models.search import DuplicateGroup, DuplicateType, ExtractedContact
from contact_finder.services.logger import logger
from contact_finder.tools.web_utils import jaccard_similarity, normalize_text, tokenize

GROUP_NAMESPACE = uuid.UUID("6f1c8a52-2f0e-4c55-9a57-0d6f5b7c1e42")

KeyFn = Callable[[ExtractedContact], list[str]]


@dataclass(slots=True)
class DedupeResult:
    groups: list[DuplicateGroup]
    unique_contacts: list[ExtractedContact]
    duplicate_count: int


def _norm(value: str | None) -> str:
    return normalize_text(value or "")


def _email_keys(contact: ExtractedContact) -> list[str]:
    return [contact.email.strip().lower()] if contact.email and contact.email.strip() else []


def _name_outlet_keys(contact: ExtractedContact) -> list[str]:
    name, outlet = _norm(contact.name), _norm(contact.outlet)
    return [f"{name}|{outlet}"] if name and outlet else []


def _name_title_keys(contact: ExtractedContact) -> list[str]:
    name, title = _norm(contact.name), _norm(contact.title)
    return [f"{name}|{title}"] if name and title else []


def _outlet_title_keys(contact: ExtractedContact) -> list[str]:
    outlet, title = _norm(contact.outlet), _norm(contact.title)
    return [f"{outlet}|{title}"] if outlet and title else []


def _social_keys(contact: ExtractedContact) -> list[str]:
    return sorted({p.url.strip().lower().rstrip("/") for p in contact.social_profiles if p.url})


EXACT_RULES: tuple[tuple[DuplicateType, KeyFn], ...] = (
    (DuplicateType.EMAIL, _email_keys),
    (DuplicateType.NAME_OUTLET, _name_outlet_keys),
    (DuplicateType.NAME_TITLE, _name_title_keys),
    (DuplicateType.OUTLET_TITLE, _outlet_title_keys),
)


def canonical_order(contact: ExtractedContact) -> tuple[float, str]:
    return (contact.extracted_at, contact.contact_id)


def representative_order(contact: ExtractedContact) -> tuple[float, float, float, str]:
    return (-contact.quality_score, -contact.confidence_score, contact.extracted_at, contact.contact_id)


def bio_similarity(a: str | None, b: str | None) -> float:
    if not a or not b:
        return 0.0
    return jaccard_similarity(tokenize(a), tokenize(b))


class ContactDeduplicator:
    def __init__(self, *, bio_similarity_threshold: float | None = None):
        self.bio_similarity_threshold = (
            settings.dedupe_bio_similarity_threshold
            if bio_similarity_threshold is None
            else bio_similarity_threshold
        )

    def _make_group(
        self,
        members: list[ExtractedContact],
        duplicate_type: DuplicateType,
        similarity: float,
        reason: str,
    ) -> DuplicateGroup:
        ids = sorted(c.contact_id for c in members)
        selected = min(members, key=representative_order)
        group_id = str(uuid.uuid5(GROUP_NAMESPACE, f"{duplicate_type.value}:{','.join(ids)}"))
        return DuplicateGroup(
            group_id=group_id,
            duplicate_type=duplicate_type,
            similarity_score=similarity,
            contact_ids=[c.contact_id for c in sorted(members, key=canonical_order)],
            selected_contact_id=selected.contact_id,
            reason=reason,
        )

    def _exact_groups(
        self,
        pending: list[ExtractedContact],
        duplicate_type: DuplicateType,
        key_fn: KeyFn,
    ) -> list[DuplicateGroup]:
        keys_by_contact = {c.contact_id: key_fn(c) for c in pending}
        counts: dict[str, int] = {}
        for keys in keys_by_contact.values():
            for key in keys:
                counts[key] = counts.get(key, 0) + 1

        # a contact with several keys joins the first one it shares with someone else
        buckets: dict[str, list[ExtractedContact]] = {}
        for contact in pending:
            shared = [k for k in keys_by_contact[contact.contact_id] if counts[k] > 1]
            if shared:
                buckets.setdefault(shared[0], []).append(contact)

        groups: list[DuplicateGroup] = []
        for key, members in buckets.items():
            if len(members) < 2:
                continue
            groups.append(
                self._make_group(members, duplicate_type, 1.0, f"Matching {duplicate_type.value}: {key}")
            )
        return groups

    def _bio_groups(self, pending: list[ExtractedContact]) -> list[DuplicateGroup]:
        with_bio = [c for c in pending if c.bio and c.bio.strip()]
        used: set[str] = set()
        groups: list[DuplicateGroup] = []
        for i, seed in enumerate(with_bio):
            if seed.contact_id in used:
                continue
            members = [seed]
            scores: list[float] = []
            for other in with_bio[i + 1 :]:
                if other.contact_id in used:
                    continue
                score = bio_similarity(seed.bio, other.bio)
                if score >= self.bio_similarity_threshold:
                    members.append(other)
                    scores.append(score)
            if len(members) < 2:
                continue
            used.update(c.contact_id for c in members)
            groups.append(
                self._make_group(
                    members,
                    DuplicateType.SIMILAR_BIO,
                    sum(scores) / len(scores),
                    f"Bio similarity >= {self.bio_similarity_threshold:.2f}",
                )
            )
        return groups

    def deduplicate(self, contacts: list[ExtractedContact]) -> DedupeResult:
        ordered = sorted(contacts, key=canonical_order)
        grouped: set[str] = set()
        groups: list[DuplicateGroup] = []

        def pending() -> list[ExtractedContact]:
            return [c for c in ordered if c.contact_id not in grouped]

        try:
            for duplicate_type, key_fn in EXACT_RULES:
                for group in self._exact_groups(pending(), duplicate_type, key_fn):
                    groups.append(group)
                    grouped.update(group.contact_ids)
            for group in self._bio_groups(pending()):
                groups.append(group)
                grouped.update(group.contact_ids)
            for group in self._exact_groups(pending(), DuplicateType.SOCIAL_MEDIA, _social_keys):
                groups.append(group)
                grouped.update(group.contact_ids)
        except Exception as exc:
            logger.warning(f"Deduplication aborted, returning contacts ungrouped: {exc}")
            return DedupeResult(groups=[], unique_contacts=ordered, duplicate_count=0)

        selected = {g.selected_contact_id for g in groups}
        by_id = {c.contact_id: c for c in ordered}
        for group in groups:
            for contact_id in group.contact_ids:
                if contact_id != group.selected_contact_id:
                    by_id[contact_id].metadata["duplicate_of"] = group.selected_contact_id

        unique = [c for c in ordered if c.contact_id not in grouped or c.contact_id in selected]
        return DedupeResult(
            groups=groups,
            unique_contacts=unique,
            duplicate_count=len(ordered) - len(unique),
        )
