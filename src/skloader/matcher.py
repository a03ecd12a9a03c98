"""SKLoader Matcher — rank skills against a task query from metadata only.

Scoring uses nothing but each descriptor's ``name`` and ``description``;
bodies and resource files are never opened, so selecting a skill costs no
content I/O.

Score of a descriptor for a query:

    sum over distinct query tokens t of
        idf(t) * (name_weight * [t in name] + [t in description])

    idf(t) = ln(1 + N / df(t))

idf is always positive and the score is not normalized by query length, so
adding a query token that occurs in a description never lowers the score.
"""

from __future__ import annotations

import logging
import math
import re
from typing import NamedTuple, Optional

from .models import SkillDescriptor
from .registry import SkillRegistry

logger = logging.getLogger("skloader.matcher")

_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "how",
        "i", "in", "into", "is", "it", "of", "on", "or", "so", "that", "the",
        "this", "to", "use", "using", "when", "with", "you", "your",
    }
)


class Match(NamedTuple):
    """One ranked candidate."""

    descriptor: SkillDescriptor
    score: float

    @property
    def skill_id(self) -> str:
        return self.descriptor.id


def _fold(token: str) -> str:
    # apis -> api, forms -> form; keep "class", "status", "analysis"
    if len(token) > 3 and token.endswith("s") and not token.endswith(("ss", "us", "sis")):
        return token[:-1]
    return token


def tokenize(text: str) -> list[str]:
    """Split text into lower-case, plural-folded tokens without stop words.

    Args:
        text: Free text.

    Returns:
        list[str]: Tokens in order of appearance (duplicates kept).
    """
    return [_fold(t) for t in _TOKEN_RE.findall(text.lower()) if t not in STOP_WORDS]


class RelevanceMatcher:
    """Precomputed token index over a registry's names and descriptions.

    The index is built once per registry; since registries are immutable the
    matcher can be shared by any number of threads.

    Args:
        registry: The skill registry to match against.
        threshold: Only scores strictly above this are returned.
        name_weight: Weight of a name hit relative to a description hit.
    """

    def __init__(self, registry: SkillRegistry, threshold: float = 0.0, name_weight: float = 2.0) -> None:
        if name_weight < 0:
            raise ValueError("name_weight must not be negative")
        self.registry = registry
        self.threshold = threshold
        self.name_weight = name_weight

        self._name_tokens: list[frozenset[str]] = []
        self._desc_tokens: list[frozenset[str]] = []
        doc_freq: dict[str, int] = {}
        for descriptor in registry.list():
            name_tokens = frozenset(tokenize(descriptor.name))
            desc_tokens = frozenset(tokenize(descriptor.description))
            self._name_tokens.append(name_tokens)
            self._desc_tokens.append(desc_tokens)
            for token in name_tokens | desc_tokens:
                doc_freq[token] = doc_freq.get(token, 0) + 1

        total = max(len(registry), 1)
        self._idf = {t: math.log(1.0 + total / df) for t, df in doc_freq.items()}

    def score(self, descriptor_index: int, query_tokens: frozenset[str]) -> float:
        """Score the descriptor at ``descriptor_index`` (scan order)."""
        name_tokens = self._name_tokens[descriptor_index]
        desc_tokens = self._desc_tokens[descriptor_index]
        total = 0.0
        for token in query_tokens:
            idf = self._idf.get(token)
            if idf is None:
                continue
            weight = 0.0
            if token in name_tokens:
                weight += self.name_weight
            if token in desc_tokens:
                weight += 1.0
            total += idf * weight
        return total

    def match(self, query: str, top_k: Optional[int] = None) -> list[Match]:
        """Rank descriptors against a free-text query.

        Args:
            query: The task description.
            top_k: Maximum number of results (None = all qualifying).

        Returns:
            list[Match]: Highest score first; ties in scan order. Empty when
                nothing scores above the threshold.

        Raises:
            ValueError: If top_k is not positive.
        """
        if top_k is not None and top_k <= 0:
            raise ValueError(f"top_k must be positive, got {top_k}")

        query_tokens = frozenset(tokenize(query))
        if not query_tokens:
            return []

        scored: list[tuple[float, int]] = []
        for idx in range(len(self._name_tokens)):
            # filtering, ranking and output share the rounded score
            value = round(self.score(idx, query_tokens), 6)
            if value > self.threshold:
                scored.append((value, idx))

        scored.sort(key=lambda pair: (-pair[0], pair[1]))
        if top_k is not None:
            scored = scored[:top_k]

        descriptors = self.registry.list()
        results = [Match(descriptors[idx], value) for value, idx in scored]
        logger.debug("Query %r matched %d skill(s)", query, len(results))
        return results


def match(
    registry: SkillRegistry,
    query: str,
    top_k: Optional[int] = None,
    threshold: Optional[float] = None,
) -> list[tuple[str, float]]:
    """Rank a registry's skills for a query, returning ``(id, score)`` pairs.

    Args:
        registry: Registry to search.
        query: Free-text task query.
        top_k: Maximum number of results.
        threshold: Minimum score (exclusive); defaults to 0.

    Returns:
        list[tuple[str, float]]: Ranked ids with scores.
    """
    matcher = RelevanceMatcher(registry, threshold=threshold if threshold is not None else 0.0)
    return [(m.skill_id, m.score) for m in matcher.match(query, top_k=top_k)]
