"""Term normalizer: maps free-text vocabulary onto controlled terms.

Each vocabulary table maps a controlled term to the synonyms that identify
it, e.g. ``{"blue": ("blue", "navy", "blå"), "red": ("red", "röd")}``.
Tables are loaded once (from CSV files or dicts) and are read-only for the
rest of the run, so they can be shared by every feed worker.
"""

import csv
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

from feedservice.config import MAPPING_NAMES
from feedservice.logging_config import get_logger
from feedservice.text import sanitize, split_list

__all__ = [
    "VocabularyTable",
    "TermMapping",
    "freeze_table",
    "load_table_csv",
    "find_terms",
    "lookup_term",
    "map_attributes",
]

logger = get_logger("normalizer")

VocabularyTable = Mapping[str, Tuple[str, ...]]


def freeze_table(raw: Mapping[str, Iterable[str]]) -> VocabularyTable:
    """Lower-case terms and synonyms and wrap the table read-only.

    A term always counts as its own synonym.
    """
    table: Dict[str, Tuple[str, ...]] = {}
    for term, synonyms in raw.items():
        key = sanitize(term).lower()
        if not key:
            continue
        merged = list(table.get(key, ()))
        for s in [key, *synonyms]:
            s = sanitize(s).lower()
            if s and s not in merged:
                merged.append(s)
        table[key] = tuple(merged)
    return MappingProxyType(table)


def load_table_csv(path: Union[str, Path]) -> VocabularyTable:
    """Load a two-column CSV (term, synonym) into a vocabulary table.

    Rows with fewer than two columns and lines starting with '#' are skipped.
    A header row 'term,synonym' is ignored.
    """
    raw: Dict[str, List[str]] = {}
    with open(path, "r", newline="", encoding="utf-8") as f:
        for row in csv.reader(f):
            if len(row) < 2 or row[0].startswith("#"):
                continue
            term, synonym = row[0].strip(), row[1].strip()
            if term.lower() == "term" and synonym.lower() == "synonym":
                continue
            raw.setdefault(term, []).append(synonym)
    return freeze_table(raw)


@dataclass(frozen=True)
class TermMapping:
    """All vocabulary tables used during record conversion."""

    colors: VocabularyTable = field(default_factory=lambda: MappingProxyType({}))
    patterns: VocabularyTable = field(default_factory=lambda: MappingProxyType({}))
    sizes: VocabularyTable = field(default_factory=lambda: MappingProxyType({}))
    genders: VocabularyTable = field(default_factory=lambda: MappingProxyType({}))
    categories: VocabularyTable = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_dict(cls, tables: Mapping[str, Mapping[str, Iterable[str]]]) -> "TermMapping":
        unknown = set(tables) - set(MAPPING_NAMES)
        if unknown:
            raise ValueError(f"Unknown vocabulary tables: {sorted(unknown)}")
        return cls(**{name: freeze_table(table) for name, table in tables.items()})

    @classmethod
    def from_csv_dir(cls, directory: Union[str, Path]) -> "TermMapping":
        """Load '<name>.csv' for every table name found in the directory."""
        directory = Path(directory)
        tables: Dict[str, VocabularyTable] = {}
        for name in MAPPING_NAMES:
            path = directory / f"{name}.csv"
            if not path.exists():
                logger.warning(f"No {name} vocabulary at {path}, table stays empty")
                continue
            tables[name] = load_table_csv(path)
            logger.info(f"Loaded {len(tables[name])} {name} terms from {path}")
        return cls(**tables)


def _matches(candidate: str, table: VocabularyTable) -> Iterator[Tuple[int, str]]:
    for term, synonyms in table.items():
        longest = max((len(s) for s in synonyms if s in candidate), default=0)
        if longest:
            yield longest, term


def find_terms(candidate: Optional[str], table: VocabularyTable) -> Set[str]:
    """Controlled terms whose synonyms occur in the candidate.

    When several terms match through synonyms of different lengths, only the
    terms with the longest matching synonym are returned ("dark blue" beats
    "blue").
    """
    s = sanitize(candidate).lower()
    if not s:
        return set()
    matches = list(_matches(s, table))
    if not matches:
        return set()
    best = max(length for length, _ in matches)
    return {term for length, term in matches if length == best}


def lookup_term(token: Optional[str], table: VocabularyTable) -> Optional[str]:
    """Controlled term one of whose synonyms equals the token exactly.

    For atomic values such as sizes, where a substring hit would be wrong
    ("l" inside "w32 l34").
    """
    s = sanitize(token).lower()
    if not s:
        return None
    for term, synonyms in sorted(table.items()):
        if s in synonyms:
            return term
    return None


def map_attributes(
    candidates: Union[str, Iterable[Optional[str]]],
    table: VocabularyTable,
    fallback: str = "",
    strict: bool = True,
) -> Set[str]:
    """Map one or more raw strings onto controlled terms.

    Every candidate is split into list tokens and each token is looked up.
    A candidate without any matching token is dropped in strict mode and
    kept (sanitized, lower-cased) in lenient mode. If nothing at all matched
    and a fallback is given, the fallback is the only result.
    """
    if candidates is None or isinstance(candidates, str):
        candidates = [candidates]

    attributes: Set[str] = set()
    seen: Dict[str, Set[str]] = {}
    for candidate in candidates:
        if not candidate:
            continue
        candidate_matched = False
        for token in split_list(candidate):
            token = token.lower()
            if token not in seen:
                seen[token] = find_terms(token, table)
            terms = seen[token]
            if terms:
                candidate_matched = True
                attributes.update(terms)
        if not candidate_matched and not strict:
            kept = sanitize(candidate).lower()
            if kept:
                attributes.add(kept)

    if not attributes and fallback:
        return {fallback}
    return attributes
