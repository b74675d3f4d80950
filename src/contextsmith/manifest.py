"""Manifest: the durable record of what a context bundle contains and why.

Every candidate the selector considered gets one entry, included or not,
with its token estimate and score. The JSON form is read back by the
``explain`` and ``stats`` commands without re-running the pipeline.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from contextsmith.exceptions import ManifestError, MissingFileError
from contextsmith.logger import get_logger

logger = get_logger()


@dataclass(frozen=True)
class WeightsUsed:
    text: float
    diff: float
    recency: float
    proximity: float
    test: float


@dataclass(frozen=True)
class ManifestEntry:
    file_path: str
    start_line: int                 # 0 when not line-addressable (whole file)
    end_line: int
    token_estimate: int
    char_count: int
    reason: str
    score: float
    included: bool
    language: str

    @property
    def location(self) -> str:
        if self.start_line > 0:
            return f"{self.file_path}:{self.start_line}-{self.end_line}"
        return self.file_path


@dataclass(frozen=True)
class ManifestSummary:
    total_tokens: int
    budget: Optional[int]
    reserve_tokens: int
    snippet_count: int
    included_count: int
    model: str
    weights_used: Optional[WeightsUsed] = None


@dataclass(frozen=True)
class Manifest:
    summary: ManifestSummary
    entries: List[ManifestEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        """Rebuild a manifest from its dict form.

        Raises:
            KeyError, TypeError: when required fields are missing or malformed.
        """
        summary = dict(data["summary"])
        weights = summary.pop("weights_used", None)
        return cls(
            summary=ManifestSummary(
                weights_used=WeightsUsed(**weights) if weights is not None else None,
                **summary,
            ),
            entries=[ManifestEntry(**entry) for entry in data["entries"]],
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "Manifest":
        return cls.from_dict(json.loads(text))


def build_manifest(
    entries: List[ManifestEntry],
    model: str,
    budget: Optional[int],
    reserve: int = 0,
    weights: Optional[WeightsUsed] = None,
) -> Manifest:
    """Wrap *entries* with summary totals (tokens count included entries only)."""
    included = [e for e in entries if e.included]
    return Manifest(
        summary=ManifestSummary(
            total_tokens=sum(e.token_estimate for e in included),
            budget=budget,
            reserve_tokens=reserve,
            snippet_count=len(entries),
            included_count=len(included),
            model=model,
            weights_used=weights,
        ),
        entries=list(entries),
    )


def write_manifest(manifest: Manifest, path: Path) -> None:
    """Write *manifest* as pretty JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(manifest.to_json(), encoding="utf-8")
    logger.debug(f"Manifest written to {path}")


def read_manifest(path: Path) -> Manifest:
    """Read a manifest JSON file.

    Raises:
        ManifestError: file missing, unreadable, or not a manifest.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(str(path), f"cannot read manifest: {e}") from e

    try:
        return Manifest.from_json(text)
    except (ValueError, KeyError, TypeError) as e:
        raise ManifestError(str(path), f"failed to parse manifest: {e}") from e


def manifest_sibling_path(out_path: Path) -> Path:
    """``out/bundle.md`` -> ``out/bundle.manifest.json``."""
    stem = out_path.stem or "output"
    return out_path.parent / f"{stem}.manifest.json"


def sort_entries_for_display(entries: List[ManifestEntry]) -> List[ManifestEntry]:
    """Score descending; ties by path, lines, reason, tokens, language."""
    return sorted(entries, key=lambda e: (
        -e.score,
        e.file_path,
        e.start_line,
        e.end_line,
        e.reason,
        e.token_estimate,
        e.language,
    ))


def resolve_manifest_path(target: Optional[Path] = None) -> Path:
    """Find the manifest named by *target*.

    A directory resolves to ``<dir>/manifest.json``; no target resolves to
    ``./manifest.json``.

    Raises:
        MissingFileError: no manifest at the resolved location.
    """
    if target is None:
        candidate = Path("manifest.json")
        if not candidate.exists():
            raise MissingFileError(
                "manifest.json", "no manifest.json found in current directory; specify a path",
            )
        return candidate

    if target.is_dir():
        candidate = target / "manifest.json"
        if not candidate.exists():
            raise MissingFileError(str(target), "no manifest.json found in directory")
        return candidate

    return target


def tokens_by_language(entries: List[ManifestEntry]) -> List[Tuple[str, int, int]]:
    """``(language, entry_count, tokens)`` rows, most tokens first."""
    totals: Dict[str, List[int]] = {}
    for entry in entries:
        row = totals.setdefault(entry.language or "unknown", [0, 0])
        row[0] += 1
        row[1] += entry.token_estimate
    return sorted(
        ((lang, count, tokens) for lang, (count, tokens) in totals.items()),
        key=lambda row: (-row[2], row[0]),
    )
