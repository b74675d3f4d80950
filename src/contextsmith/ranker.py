"""Ranking and scoring for context candidates.

TF-IDF style text relevance combined with four further signals (diff,
recency, proximity, test) through configurable weights. Only ``text`` is
fed from real data today; the other signals stay at 0.0 until a source
supplies them, so the scoring contract does not change when they do.
"""

import math
from dataclasses import dataclass, field
from typing import List, Sequence

from contextsmith.config import RankingWeights
from contextsmith.models import BundleSection


@dataclass
class SignalScores:
    """Per-signal scores, each normalised to [0, 1]."""
    text: float = 0.0
    diff: float = 0.0
    recency: float = 0.0
    proximity: float = 0.0
    test: float = 0.0


@dataclass
class ScoredSnippet:
    section: BundleSection
    score: float
    signals: SignalScores = field(default_factory=SignalScores)


def text_score(
    match_count: int,
    total_matches: int,
    total_sections: int,
    matched_sections: int,
) -> float:
    """TF-IDF style relevance of one candidate.

    ``tf`` is the candidate's share of all matches. ``idf`` is
    ``ln(total_sections / matched_sections) + 1``: it grows when matches
    are concentrated in few of the sections considered. The product is
    divided by the largest possible idf (one matching section) to stay
    within [0, 1].
    """
    if total_matches == 0 or total_sections == 0 or matched_sections == 0:
        return 0.0

    tf = match_count / total_matches
    idf = math.log(total_sections / matched_sections) + 1.0
    max_idf = math.log(total_sections) + 1.0
    return tf * idf / max_idf


def weighted_score(signals: SignalScores, weights: RankingWeights) -> float:
    return (
        signals.text * weights.text
        + signals.diff * weights.diff
        + signals.recency * weights.recency
        + signals.proximity * weights.proximity
        + signals.test * weights.test
    )


def _sort_key(scored: ScoredSnippet):
    s = scored.section
    return (-scored.score, s.file_path, s.reason, s.start_line, s.end_line, s.content)


def rank_snippets(
    sections: Sequence[BundleSection],
    match_counts: Sequence[int],
    weights: RankingWeights,
) -> List[ScoredSnippet]:
    """Score *sections* and return them best first.

    ``match_counts[i]`` belongs to ``sections[i]``. Ties on score are broken
    by file path, then reason, then line span, so the order does not
    depend on input order.

    Raises:
        ValueError: if the two sequences differ in length.
    """
    if len(sections) != len(match_counts):
        raise ValueError(
            f"sections and match_counts differ in length ({len(sections)} != {len(match_counts)})"
        )

    total_matches = sum(match_counts)
    matched_sections = sum(1 for count in match_counts if count > 0)

    scored = []
    for section, count in zip(sections, match_counts):
        signals = SignalScores(
            text=text_score(count, total_matches, len(sections), matched_sections),
        )
        scored.append(ScoredSnippet(
            section=section,
            score=weighted_score(signals, weights),
            signals=signals,
        ))

    scored.sort(key=_sort_key)
    return scored
