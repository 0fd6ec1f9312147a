"""Name normalization, search tokens and fuzzy similarity.

Every display name is reduced to a small set of canonical search tokens:

- the lowercase trimmed name
- the same with Cyrillic "ё" folded to "е" and punctuation stripped
- every member of a cross-locale alias group reachable from that form

Tokens are memoized per document key. The memo is a bounded table, so
clearing it never changes results.
"""

from __future__ import annotations

from collections import Counter
import re
from typing import Any, Iterable

from .cache import BoundedCache

# Bidirectional cross-locale synonyms. Members are written in normalized form.
ALIAS_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"half plate", "half plate armor", "полулаты", "полулатный доспех"}),
    frozenset({"plate", "plate armor", "латы", "латный доспех"}),
    frozenset({"chain mail", "кольчуга"}),
    frozenset({"chain shirt", "кольчужная рубаха"}),
    frozenset({"scale mail", "чешуйчатый доспех"}),
    frozenset({"breastplate", "кираса"}),
    frozenset({"leather armor", "кожаный доспех"}),
    frozenset({"studded leather armor", "проклепанный кожаный доспех"}),
    frozenset({"shield", "щит"}),
    frozenset({"arrows", "arrow", "стрелы", "стрела"}),
    frozenset({"crossbow bolts", "bolts", "арбалетные болты", "болты"}),
    frozenset({"longsword", "длинный меч"}),
    frozenset({"shortsword", "короткий меч"}),
    frozenset({"greatsword", "двуручный меч"}),
    frozenset({"dagger", "кинжал"}),
    frozenset({"greataxe", "секира"}),
    frozenset({"handaxe", "ручной топор"}),
    frozenset({"battleaxe", "боевой топор"}),
    frozenset({"mace", "булава"}),
    frozenset({"warhammer", "боевой молот"}),
    frozenset({"quarterstaff", "боевой посох"}),
    frozenset({"spear", "копье"}),
    frozenset({"javelin", "метательное копье"}),
    frozenset({"rapier", "рапира"}),
    frozenset({"scimitar", "скимитар"}),
    frozenset({"club", "дубинка"}),
    frozenset({"shortbow", "короткий лук"}),
    frozenset({"longbow", "длинный лук"}),
    frozenset({"light crossbow", "легкий арбалет"}),
    frozenset({"heavy crossbow", "тяжелый арбалет"}),
    frozenset({"potion of healing", "healing potion", "зелье лечения"}),
    frozenset({"healer's kit", "healers kit", "набор целителя"}),
    frozenset({"rope", "hempen rope", "веревка", "пеньковая веревка"}),
    frozenset({"torch", "факел"}),
    frozenset({"rations", "rations (1 day)", "рацион", "рационы"}),
    frozenset({"backpack", "рюкзак"}),
    frozenset({"thieves' tools", "thieves tools", "воровские инструменты"}),
    frozenset({"component pouch", "мешочек с компонентами"}),
    frozenset({"holy symbol", "священный символ"}),
    frozenset({"spellbook", "книга заклинаний"}),
)

# Writing-system detection, checked in order.
SCRIPT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("cyrillic", re.compile(r"[а-яё]", re.IGNORECASE)),
    ("latin", re.compile(r"[a-z]", re.IGNORECASE)),
)

# Interface language prefix -> preferred script.
LOCALE_SCRIPTS = {
    "ru": "cyrillic",
    "uk": "cyrillic",
    "be": "cyrillic",
    "en": "latin",
}

LOOKUP_STOP_WORDS = frozenset({
    "of", "the", "and", "a", "an", "with", "for", "to", "in",
    "на", "и", "с", "для",
})

_PUNCT_RE = re.compile(r"[^\w\s]|_")
_SPACE_RE = re.compile(r"\s+")
_WORD_SPLIT_RE = re.compile(r"[^0-9a-zа-я]+")
_KEYWORD_CLEAN_RE = re.compile(r"[^a-zа-яё0-9\s'-]", re.IGNORECASE)

MIN_WORD_LENGTH = 3


def fold_text(value: Any) -> str:
    """Lowercase, trim and fold "ё" into "е"."""
    return str(value or "").strip().lower().replace("ё", "е")


def normalize_text(value: Any) -> str:
    """Script-normalized form: folded, punctuation stripped, whitespace collapsed."""
    folded = fold_text(value)
    return _SPACE_RE.sub(" ", _PUNCT_RE.sub(" ", folded)).strip()


def collapse_whitespace(value: Any, max_length: int | None = None) -> str:
    text = _SPACE_RE.sub(" ", str(value or "")).strip()
    if max_length is not None:
        text = text[:max_length].strip()
    return text


def _build_alias_index(groups: Iterable[frozenset[str]]) -> dict[str, frozenset[str]]:
    index: dict[str, set[str]] = {}
    for group in groups:
        members = {normalize_text(member) for member in group if normalize_text(member)}
        for member in members:
            index.setdefault(member, set()).update(members)
    return {key: frozenset(value) for key, value in index.items()}


_ALIAS_INDEX = _build_alias_index(ALIAS_GROUPS)


def alias_variants(normalized: str) -> frozenset[str]:
    return _ALIAS_INDEX.get(normalized, frozenset())


def expand_term(value: Any) -> list[str]:
    """Return the ordered search variants of a raw term (original first)."""
    out: list[str] = []
    lowered = str(value or "").strip().lower()
    if lowered:
        out.append(lowered)
    normalized = normalize_text(value)
    if normalized and normalized not in out:
        out.append(normalized)
    for alias in sorted(alias_variants(normalized)):
        if alias not in out:
            out.append(alias)
    return out


def document_search_values(doc: Any) -> list[str]:
    """Raw strings a document can be found by: name, original name, identifier."""
    if isinstance(doc, dict):
        system = doc.get("system") or {}
        flags = doc.get("flags") or {}
        babele = flags.get("babele") or {} if isinstance(flags, dict) else {}
        values = [
            doc.get("name"),
            doc.get("originalName"),
            babele.get("originalName") if isinstance(babele, dict) else None,
            system.get("identifier") if isinstance(system, dict) else None,
        ]
    else:
        values = [
            getattr(doc, "name", None),
            getattr(doc, "original_name", None),
            getattr(doc, "identifier", None),
        ]
    return [str(value) for value in values if value]


def compute_search_tokens(doc: Any) -> frozenset[str]:
    tokens: set[str] = set()
    for value in document_search_values(doc):
        tokens.update(expand_term(value))
    return frozenset(tokens)


def search_words(tokens: Iterable[str]) -> frozenset[str]:
    """Split tokens into alphanumeric word fragments of at least three characters."""
    words: set[str] = set()
    for token in tokens:
        for part in _WORD_SPLIT_RE.split(fold_text(token)):
            if len(part) >= MIN_WORD_LENGTH:
                words.add(part)
    return frozenset(words)


class SearchTokenizer:
    """Memoizes search tokens per stable document key."""

    def __init__(self, max_entries: int = 20000) -> None:
        self._cache = BoundedCache(max_entries=max_entries)

    def tokens(self, doc: Any) -> frozenset[str]:
        key = getattr(doc, "token_key", None)
        if not key:
            return compute_search_tokens(doc)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        tokens = compute_search_tokens(doc)
        self._cache.set(key, tokens)
        return tokens

    def words(self, doc: Any) -> frozenset[str]:
        return search_words(self.tokens(doc))

    def clear(self) -> None:
        self._cache.clear()


default_tokenizer = SearchTokenizer()


def search_tokens(doc: Any) -> frozenset[str]:
    return default_tokenizer.tokens(doc)


def detect_script(value: Any) -> str | None:
    text = str(value or "")
    for script, pattern in SCRIPT_PATTERNS:
        if pattern.search(text):
            return script
    return None


def script_for_locale(locale: str | None) -> str | None:
    lang = str(locale or "").strip().lower()[:2]
    return LOCALE_SCRIPTS.get(lang)


def _bigrams(text: str) -> Counter[str]:
    return Counter(text[i:i + 2] for i in range(len(text) - 1))


def bigram_similarity(a: Any, b: Any) -> float:
    """Dice coefficient over character bigrams of the normalized strings."""
    left = normalize_text(a)
    right = normalize_text(b)
    if left and left == right:
        return 1.0
    if len(left) < 2 or len(right) < 2:
        return 0.0
    left_grams = _bigrams(left)
    right_grams = _bigrams(right)
    overlap = sum((left_grams & right_grams).values())
    total = sum(left_grams.values()) + sum(right_grams.values())
    return 2.0 * overlap / total if total else 0.0


def lookup_keywords(name: Any, limit: int = 5) -> list[str]:
    """Significant words of a requested name, used for keyword matching."""
    cleaned = _KEYWORD_CLEAN_RE.sub(" ", str(name or "").lower())
    out: list[str] = []
    for part in cleaned.split():
        part = part.strip()
        if len(part) < MIN_WORD_LENGTH or part in LOOKUP_STOP_WORDS or part in out:
            continue
        out.append(part)
        if len(out) >= limit:
            break
    return out
