from __future__ import annotations

import re

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.core.errors import MalformedInputError
from slanglab.domain.models import Term
from slanglab.persistence.db import upsert_insert
from slanglab.services.usage import with_backend_timeout


MAX_PHRASE_WORDS = 3
MAX_PHRASE_LENGTH = 100
MAX_TEXT_LENGTH = 500

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def normalize_phrase(text: str) -> str:
    # Uniqueness key for a tracked phrase: trimmed, single-spaced, lower-case.
    return collapse_whitespace(text).lower()


def slugify(text: str) -> str:
    slug = _NON_SLUG.sub("-", normalize_phrase(text)).strip("-")
    return slug or "term"


def validate_phrase(phrase: str) -> str:
    cleaned = collapse_whitespace(phrase or "")
    if not cleaned:
        raise MalformedInputError("Phrase is required")
    if len(cleaned.split(" ")) > MAX_PHRASE_WORDS:
        raise MalformedInputError(f"Phrase must be {MAX_PHRASE_WORDS} words or less")
    if len(cleaned) > MAX_PHRASE_LENGTH:
        raise MalformedInputError(f"Phrase must be at most {MAX_PHRASE_LENGTH} characters")
    return cleaned


def validate_creation(phrase: str, meaning: str, example: str) -> tuple[str, str, str]:
    # Creations share the phrase rules with tracking plus bounded free text.
    cleaned_phrase = validate_phrase(phrase)
    cleaned_meaning = (meaning or "").strip()
    cleaned_example = (example or "").strip()
    if not cleaned_meaning or not cleaned_example:
        raise MalformedInputError("Meaning and example are required")
    if len(cleaned_meaning) > MAX_TEXT_LENGTH or len(cleaned_example) > MAX_TEXT_LENGTH:
        raise MalformedInputError(f"Meaning and example must be at most {MAX_TEXT_LENGTH} characters")
    return cleaned_phrase, cleaned_meaning, cleaned_example


async def get_term(session: AsyncSession, term_id: int) -> Term | None:
    return await with_backend_timeout(session.get(Term, term_id))


async def get_or_create_term(session: AsyncSession, owner_id: str, phrase: str) -> Term:
    # Idempotent on (owner_id, normalized_text); concurrent callers converge on one row.
    text = validate_phrase(phrase)
    normalized = normalize_phrase(text)
    insert = upsert_insert(session)
    stmt = (
        insert(Term.__table__)
        .values(owner_id=owner_id, text=text, normalized_text=normalized, slug=slugify(text))
        .on_conflict_do_nothing(index_elements=["owner_id", "normalized_text"])
    )
    await with_backend_timeout(session.execute(stmt))
    result = await with_backend_timeout(
        session.execute(
            select(Term).where(Term.owner_id == owner_id, Term.normalized_text == normalized)
        )
    )
    return result.scalar_one()
