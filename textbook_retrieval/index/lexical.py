"""
Keyword relevance scoring for textbook chunks (no embeddings).

score = sum(tf(term) * specificity(term)) / len(query_terms), then optional
lesson / page-proximity boosts, clamped to [0, 1].
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Protocol, Set

from .schema import RetrievableChunk, ScoredChunk

logger = logging.getLogger(__name__)

STOP_WORDS: FrozenSet[str] = frozenset("""
a an and are as at be by do for from has have he her his how i if in is it its
just me my no not of on or our out so that the them then there these they this
to up us was we what when which who why will with would you your can does did
been being could should am had having here now some very any own same other
such than too only each few more most all both after before above below
between into through during about against again once also however much
""".split())

MATH_TERMS: FrozenSet[str] = frozenset("""
add addition subtract subtraction multiply multiplication divide division
fraction decimal percent percentage ratio proportion equation variable
expression term coefficient constant exponent power root square cube factor
multiple prime composite even odd positive negative integer whole natural
rational irrational real complex absolute value greater less equal inequality
solve simplify evaluate graph plot coordinate axis origin slope intercept
linear quadratic polynomial function domain range input output area perimeter
volume surface angle degree radian triangle rectangle circle radius diameter
circumference parallel perpendicular congruent similar symmetry reflection
rotation translation mean median mode average probability chance outcome
event sample data statistics frequency
""".split())

PROXIMITY_WINDOW_PAGES = 20
TIE_EPSILON = 0.001

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

_MATH_PATTERNS = [
    re.compile(r"[+\-*/=<>]"),             # operators
    re.compile(r"\d+\s*[+\-*/]\s*\d+"),     # "5 + 3"
    re.compile(r"\d+/\d+"),                 # fractions
    re.compile(r"\^\d+"),                   # exponents
    re.compile(r"sqrt|root", re.IGNORECASE),
    re.compile(r"equation|formula", re.IGNORECASE),
]


class TermClassifier:
    """Stop-word / domain-term lookup. Swap in another vocabulary per subject."""

    def __init__(self, stop_words: Iterable[str], domain_terms: Iterable[str]):
        self.stop_words = frozenset(stop_words)
        self.domain_terms = frozenset(domain_terms)

    def is_domain_term(self, token: str) -> bool:
        return token in self.domain_terms

    def keep(self, token: str) -> bool:
        return token not in self.stop_words or token in self.domain_terms


class Stemmer(Protocol):
    def stem(self, token: str) -> Set[str]:
        ...


class SuffixStripper:
    """Naive suffix stripping: -ing, -ed, plural -s (not -ss), -ly."""

    def stem(self, token: str) -> Set[str]:
        out = {token}
        if token.endswith("ing") and len(token) > 5:
            out.add(token[:-3])
        elif token.endswith("ed") and len(token) > 4:
            out.add(token[:-2])
        elif token.endswith("s") and len(token) > 3 and not token.endswith("ss"):
            out.add(token[:-1])
        elif token.endswith("ly") and len(token) > 4:
            out.add(token[:-2])
        return out


DEFAULT_CLASSIFIER = TermClassifier(STOP_WORDS, MATH_TERMS)
DEFAULT_STEMMER = SuffixStripper()


@dataclass
class BoostOptions:
    target_lesson_id: Optional[str] = None
    current_page: Optional[int] = None
    lesson_boost: float = 0.3
    page_proximity_boost: float = 0.0


def tokenize(text: str, classifier: Optional[TermClassifier] = None) -> List[str]:
    classifier = classifier or DEFAULT_CLASSIFIER
    words = _NON_ALNUM_RE.sub(" ", (text or "").lower()).split()
    return [w for w in words if len(w) > 1 and classifier.keep(w)]


def extract_query_terms(
    query: str,
    classifier: Optional[TermClassifier] = None,
    stemmer: Optional[Stemmer] = None,
) -> List[str]:
    stemmer = stemmer or DEFAULT_STEMMER
    tokens = tokenize(query, classifier)
    terms = dict.fromkeys(tokens)
    for tok in tokens:
        # sorted() keeps variant order stable across runs
        for variant in sorted(stemmer.stem(tok) - {tok}):
            terms.setdefault(variant)
    return list(terms)


def _term_frequency(term: str, content_tokens: List[str]) -> float:
    count = sum(1 for t in content_tokens if t == term or term in t or t in term)
    return count / max(len(content_tokens), 1)


def _specificity(term: str, classifier: TermClassifier) -> float:
    # Longer terms and domain terms are more specific
    length_boost = min(len(term) / 10, 1.0)
    domain_boost = 0.3 if classifier.is_domain_term(term) else 0.0
    return 0.5 + length_boost + domain_boost


def score_chunk(
    chunk: RetrievableChunk,
    query_terms: List[str],
    boosts: Optional[BoostOptions] = None,
    classifier: Optional[TermClassifier] = None,
) -> ScoredChunk:
    classifier = classifier or DEFAULT_CLASSIFIER
    content_tokens = tokenize(chunk.content, classifier)
    matched: List[str] = []
    score = 0.0

    for term in query_terms:
        tf = _term_frequency(term, content_tokens)
        if tf > 0:
            score += tf * _specificity(term, classifier)
            matched.append(term)

    if query_terms:
        score /= len(query_terms)

    if boosts is not None:
        if boosts.target_lesson_id and chunk.lesson_id == boosts.target_lesson_id:
            score *= 1 + boosts.lesson_boost
        if boosts.current_page is not None and boosts.page_proximity_boost:
            distance = abs(chunk.page_number - boosts.current_page)
            proximity = max(0.0, 1 - distance / PROXIMITY_WINDOW_PAGES)
            score *= 1 + proximity * boosts.page_proximity_boost

    return ScoredChunk(chunk=chunk, score=min(max(score, 0.0), 1.0), matched_terms=matched)


def _rank_key(item: ScoredChunk):
    # scores are bucketed to TIE_EPSILON so near-ties fall back to page order
    return (-round(item.score / TIE_EPSILON), item.chunk.page_number)


def rank_scored(scored: List[ScoredChunk]) -> List[ScoredChunk]:
    """Best score first; scores that round to the same TIE_EPSILON step are ordered by ascending page."""
    return sorted(scored, key=_rank_key)


def score_chunks(
    chunks: List[RetrievableChunk],
    query: str,
    boosts: Optional[BoostOptions] = None,
    classifier: Optional[TermClassifier] = None,
    stemmer: Optional[Stemmer] = None,
) -> List[ScoredChunk]:
    """Score every chunk; best first, near-ties ordered by page number."""
    query_terms = extract_query_terms(query, classifier, stemmer)
    scored = rank_scored([score_chunk(c, query_terms, boosts, classifier) for c in chunks])
    logger.debug("scored %d chunks for terms %s", len(scored), query_terms)
    return scored


def contains_math_content(text: str) -> bool:
    return any(p.search(text) for p in _MATH_PATTERNS)


def highlight_matches(content: str, matched_terms: List[str]) -> str:
    out = content
    for term in matched_terms:
        out = re.sub(rf"\b({re.escape(term)}\w*)\b", r"**\1**", out, flags=re.IGNORECASE)
    return out
