"""Budget packer: choose which ranked candidates make the final bundle.

Greedy, single pass over candidates that are already in priority order:

1. candidates whose path contains a ``drop`` matcher are removed;
2. candidates whose path contains a ``must`` matcher are always kept;
3. the rest are taken in order until the next one would overflow the
   budget. The first candidate is kept even if it alone overflows, so a
   bundle is never empty because of a tiny budget.

Every candidate ends up in exactly one manifest entry.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from contextsmith.exceptions import BudgetConfigError
from contextsmith.logger import get_logger
from contextsmith.manifest import ManifestEntry
from contextsmith.models import BundleSection
from contextsmith.ranker import ScoredSnippet
from contextsmith.token_counter import TokenEstimator

logger = get_logger()

MUST_INCLUDE_REASON = "must-include"
DROPPED_REASON = "dropped by filter"


@dataclass
class Selection:
    included: List[BundleSection] = field(default_factory=list)
    entries: List[ManifestEntry] = field(default_factory=list)
    tokens_used: int = 0


def matches_any(path: str, matchers: Sequence[str]) -> bool:
    """Substring match of *path* against any matcher."""
    return any(_normalize(m) in path for m in matchers if _normalize(m))


def _normalize(matcher: str) -> str:
    return matcher[2:] if matcher.startswith("./") else matcher


def validate_budget(
    budget: Optional[int],
    reserve: int = 0,
    chars: Optional[int] = None,
) -> None:
    """Reject inconsistent budget options before selection runs.

    Raises:
        BudgetConfigError: zero/negative budget, negative reserve, or a
            reserve that swallows the whole budget.
    """
    if reserve < 0:
        raise BudgetConfigError("reserve", "must not be negative")
    if budget is not None:
        if budget <= 0:
            raise BudgetConfigError("budget", "must be greater than 0")
        if reserve >= budget:
            raise BudgetConfigError("reserve", f"({reserve}) must be less than budget ({budget})")
    elif chars is not None and chars <= 0:
        raise BudgetConfigError("chars", "must be greater than 0")


def effective_budget(
    budget: Optional[int],
    reserve: int,
    estimator: TokenEstimator,
    chars: Optional[int] = None,
) -> Optional[int]:
    """Token budget handed to :func:`select` after the response reserve.

    A character budget is converted by estimating a string of that many
    characters. Returns None when neither budget is given.
    """
    if budget is not None:
        return max(0, budget - reserve)
    if chars is not None:
        return max(0, estimator.estimate("x" * chars) - reserve)
    return None


def select(
    candidates: Sequence[ScoredSnippet],
    estimator: TokenEstimator,
    budget: Optional[int] = None,
    must: Sequence[str] = (),
    drop: Sequence[str] = (),
) -> Selection:
    """Pack *candidates* (best first) into *budget* tokens.

    Optional candidates form a prefix: once one overflows, later and
    smaller ones are not back-filled, so a larger budget never includes
    fewer candidates.

    Args:
        candidates: Ranked or otherwise ordered candidates.
        estimator: Token estimator applied to each candidate's content.
        budget: Effective token budget; None means unlimited.
        must: Path matchers that bypass the budget.
        drop: Path matchers removed before packing.

    Returns:
        Selection with included sections (must-include first) and one
        manifest entry per candidate.
    """
    selection = Selection()

    kept = [c for c in candidates if not matches_any(c.section.file_path, drop)]
    dropped = [c for c in candidates if matches_any(c.section.file_path, drop)]
    must_include = [c for c in kept if matches_any(c.section.file_path, must)]
    optional = [c for c in kept if not matches_any(c.section.file_path, must)]

    for candidate in must_include:
        tokens = estimator.estimate(candidate.section.content)
        selection.tokens_used += tokens
        selection.included.append(candidate.section)
        selection.entries.append(_entry(candidate, tokens, True, MUST_INCLUDE_REASON))

    budget_exhausted = False
    for candidate in optional:
        tokens = estimator.estimate(candidate.section.content)
        if not budget_exhausted:
            include = (
                budget is None
                or not selection.included
                or selection.tokens_used + tokens <= budget
            )
            budget_exhausted = not include
        else:
            include = False

        if include:
            selection.tokens_used += tokens
            selection.included.append(candidate.section)
        selection.entries.append(_entry(candidate, tokens, include, candidate.section.reason))

    for candidate in dropped:
        tokens = estimator.estimate(candidate.section.content)
        selection.entries.append(_entry(candidate, tokens, False, DROPPED_REASON))

    logger.debug(
        f"Selected {len(selection.included)}/{len(candidates)} candidates, "
        f"{selection.tokens_used} tokens (budget: {budget})"
    )
    return selection


def _entry(candidate: ScoredSnippet, tokens: int, included: bool, reason: str) -> ManifestEntry:
    section = candidate.section
    return ManifestEntry(
        file_path=section.file_path,
        start_line=section.start_line,
        end_line=section.end_line,
        token_estimate=tokens,
        char_count=len(section.content),
        reason=reason,
        score=candidate.score,
        included=included,
        language=section.language,
    )
