"""
Custom Value Field Matcher
Resolves a human-friendly field name ("OpenAI Key", "welcome_message",
"{{ custom_values.welcome_message }}") to one of a scope's custom values.
"""

import logging
from typing import Callable, List, Optional, Tuple

from fuzzywuzzy import fuzz, process

from app.config import settings
from app.models.schemas import CustomValueRecord, MatchResult, RecordPreview

logger = logging.getLogger(__name__)

# English and French names people give to a chatbot's opening message
WELCOME_TERMS = [
    "welcome_message",
    "welcome message",
    "intro_message",
    "intro message",
    "introduction_message",
    "introduction message",
    "greeting",
    "bienvenue",
    "message_accueil",
    "message accueil",
    "welcome",
    "accueil",
    "intro",
    "message",
]

WELCOME_HINTS = ("welcome", "message", "intro")

PREVIEW_LENGTH = 50
INDEX_PREVIEW_LENGTH = 20
TEXT_MIN_LENGTH = 15
TEXT_MAX_LENGTH = 500


def _unique(terms: List[str]) -> List[str]:
    seen = set()
    result = []
    for term in terms:
        if term and term not in seen:
            seen.add(term)
            result.append(term)
    return result


def _wrapped(term: str) -> List[str]:
    return [term, f"custom_values.{term}", f"{{{{ custom_values.{term} }}}}"]


def truncate(value: Optional[str], length: int) -> Optional[str]:
    if not value:
        return None
    return value[:length] + "..." if len(value) > length else value


def preview(record: CustomValueRecord, length: int = PREVIEW_LENGTH) -> RecordPreview:
    return RecordPreview(key=record.key, name=record.name, valuePreview=truncate(record.value, length))


def is_welcome_query(query: str) -> bool:
    lowered = query.lower()
    return any(hint in lowered for hint in WELCOME_HINTS)


class FieldMatcher:
    """Stateless: the same records and query always give the same MatchResult"""

    def search_terms(self, query: str) -> List[str]:
        lowered = query.lower()
        underscored = lowered.replace(" ", "_")
        stripped = lowered.replace("{", "").replace("}", "").strip()

        terms = [
            lowered,
            lowered.replace("api ", "api_", 1).replace(" api", "_api", 1),
            underscored,
            f"custom_values.{underscored}",
            f"{{{{ custom_values.{underscored} }}}}",
            stripped,
        ]
        if stripped.startswith("custom_values."):
            terms.append(stripped[len("custom_values."):].strip())

        if is_welcome_query(query):
            for term in WELCOME_TERMS:
                terms.extend(_wrapped(term))

        return _unique(terms)

    def _strategies(self, terms: List[str]) -> List[Tuple[str, Callable[[CustomValueRecord], bool]]]:
        return [
            ("exact_key", lambda r: r.key.lower() in terms),
            ("exact_name", lambda r: bool(r.name) and r.name.lower() in terms),
            ("key_contains", lambda r: any(t in r.key.lower() for t in terms)),
            ("name_contains", lambda r: bool(r.name) and any(t in r.name.lower() for t in terms)),
        ]

    @staticmethod
    def _contains_any(record: CustomValueRecord, words: List[str]) -> bool:
        key = record.key.lower()
        name = (record.name or "").lower()
        return any(w in key or w in name for w in words)

    def find(self, records: List[CustomValueRecord], query: str,
             terms: List[str]) -> Tuple[Optional[CustomValueRecord], Optional[str]]:
        for strategy_name, strategy in self._strategies(terms):
            match = next((r for r in records if strategy(r)), None)
            if match:
                logger.info(f"Found match using strategy {strategy_name}: {match.key}")
                return match, strategy_name

        lowered = query.lower()
        if "openai" in lowered:
            match = next((r for r in records if self._contains_any(r, ["openai"])), None)
            if match:
                logger.info(f"Found OpenAI key match: {match.key}")
                return match, "openai_fallback"

        if is_welcome_query(query):
            match = next((r for r in records if self._contains_any(r, WELCOME_TERMS)), None)
            if match:
                logger.info(f"Found welcome message match: {match.key}")
                return match, "welcome_fallback"

        return None, None

    def suggest(self, records: List[CustomValueRecord], query: str) -> List[RecordPreview]:
        """Closest records by token set ratio over key and name, for a human to review"""
        choices = {}
        for index, record in enumerate(records):
            choices[index] = f"{record.key} {record.name or ''}".strip()
        if not choices:
            return []

        ranked = process.extract(query, choices, scorer=fuzz.token_set_ratio, limit=settings.suggestion_limit)
        return [
            preview(records[index])
            for _, score, index in ranked
            if score >= settings.suggestion_min_score
        ]

    def match(self, records: List[CustomValueRecord], query: str) -> MatchResult:
        terms = self.search_terms(query)
        logger.info(f"Searching {len(records)} custom values for terms: {terms}")

        record, strategy = self.find(records, query, terms)

        candidates = [r for r in records if self._contains_any(r, WELCOME_TERMS)]
        text_fields = [
            r for r in records
            if r.value and TEXT_MIN_LENGTH < len(r.value) < TEXT_MAX_LENGTH
        ]
        logger.info(f"Found {len(candidates)} potential welcome message matches, {len(text_fields)} fields with text content")

        return MatchResult(
            found=record is not None,
            key=record.key if record else None,
            name=(record.name or None) if record else None,
            value=(record.value or None) if record else None,
            strategy=strategy,
            search_terms=terms,
            candidate_matches=[preview(r) for r in candidates],
            text_candidates=[preview(r) for r in text_fields],
            all_records=[preview(r, INDEX_PREVIEW_LENGTH) for r in records],
            suggestions=[] if record else self.suggest(records, query),
        )


field_matcher = FieldMatcher()
