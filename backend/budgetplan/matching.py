from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set

from .models import Identity

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6
HIRING_THRESHOLD = 0.85

# "Contratado 7": a hire slot nobody fills yet, never bound to a person.
PLACEHOLDER_RE = re.compile(r"^(contratad[oa]|contractor)(\s+\d+)?$", re.IGNORECASE)
HIRING_PREFIX = "contratação"

_WORD_SPLIT_RE = re.compile(r"[\s\-–—]+")


@dataclass
class MatchResult:
    identity_id: Optional[str]
    method: str
    score: float = 0.0
    candidates: int = 0


def normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip()).lower()


def words(name: str) -> Set[str]:
    return {word for word in _WORD_SPLIT_RE.split(normalize_name(name)) if word}


def similarity(a: str, b: str) -> float:
    words_a = words(a)
    words_b = words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))


def is_placeholder(name: str) -> bool:
    return bool(PLACEHOLDER_RE.match(normalize_name(name)))


def as_identities(items: Iterable[object]) -> List[Identity]:
    identities: List[Identity] = []
    for item in items:
        if isinstance(item, Identity):
            identities.append(item)
        elif isinstance(item, dict):
            if item.get("id") is None or not item.get("name"):
                continue
            identities.append(Identity(id=str(item["id"]), name=str(item["name"])))
    return identities


def explain_match(
    name: str,
    identities: Sequence[object],
    threshold: float = DEFAULT_THRESHOLD,
    hiring_threshold: float = HIRING_THRESHOLD,
) -> MatchResult:
    normalized = normalize_name(name)
    if not normalized:
        return MatchResult(None, "none")
    if is_placeholder(normalized):
        return MatchResult(None, "placeholder")

    known = [identity for identity in as_identities(identities) if normalize_name(identity.name)]
    hiring_profile = normalized.startswith(HIRING_PREFIX)
    limit = hiring_threshold if hiring_profile else threshold

    scored = [(similarity(normalized, identity.name), identity) for identity in known]
    accepted = [(score, identity) for score, identity in scored if score >= limit]
    if len(accepted) == 1:
        score, identity = accepted[0]
        return MatchResult(identity.id, "score", score, 1)
    if len(accepted) > 1:
        return MatchResult(None, "ambiguous", max(score for score, _ in accepted), len(accepted))

    best = max((score for score, _ in scored), default=0.0)
    if hiring_profile:
        return MatchResult(None, "none", best)

    contained = [
        identity
        for identity in known
        if normalized in normalize_name(identity.name) or normalize_name(identity.name) in normalized
    ]
    if len(contained) == 1:
        return MatchResult(contained[0].id, "containment", best, 1)
    if len(contained) > 1:
        return MatchResult(None, "ambiguous", best, len(contained))
    return MatchResult(None, "none", best)


def match_identity(
    name: str,
    identities: Sequence[object],
    threshold: float = DEFAULT_THRESHOLD,
    hiring_threshold: float = HIRING_THRESHOLD,
) -> Optional[str]:
    result = explain_match(name, identities, threshold, hiring_threshold)
    if result.method == "ambiguous":
        logger.warning("Resource %r matches %d identities; left unbound", name, result.candidates)
    elif result.identity_id is None:
        logger.debug("Resource %r not matched (%s, best score %.3f)", name, result.method, result.score)
    else:
        logger.debug("Resource %r matched to %s by %s", name, result.identity_id, result.method)
    return result.identity_id
