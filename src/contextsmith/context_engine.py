"""Context engine: assembles token-budgeted context bundles.

Three pipelines share the same back half:

  diff     git diff -> slice hunks -> rank -> select
  collect  explicit files | grep matches | symbol definitions -> rank -> select
  pack     previously written JSON bundle -> select (with must/drop)

Every run returns a :class:`ContextResult` holding the rendered-ready
bundle and the manifest that explains it.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Tuple, Union

from contextsmith.exceptions import MissingFileError, ValidationError
from contextsmith.git import DiffOptions, get_diff
from contextsmith.indexer import group_by_file, read_text, search_files
from contextsmith.logger import get_logger
from contextsmith.manifest import Manifest, WeightsUsed, build_manifest
from contextsmith.models import Bundle, BundleSection, DiffFile, ScannedFile, Snippet, TextMatch
from contextsmith.ranker import ScoredSnippet, rank_snippets
from contextsmith.scanner import has_generated_marker, infer_language, scan, scan_options_from_config
from contextsmith.selector import effective_budget, select, validate_budget
from contextsmith.slicer import SliceOptions, slice_diff_hunks, snippets_from_anchors, split_source_lines
from contextsmith.symbols import RegexSymbolFinder, SymbolFinder
from contextsmith.token_counter import TokenEstimator, estimator_for_model

if TYPE_CHECKING:
    from contextsmith.config import Config

logger = get_logger()


def _plural(count: int, singular: str, plural: Optional[str] = None) -> str:
    word = singular if count == 1 else (plural or singular + "s")
    return f"{count} {word}"


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------

@dataclass
class DiffRequest:
    rev_range: Optional[str] = None
    staged: bool = False
    untracked: bool = False
    since: Optional[str] = None
    hunks_only: bool = False
    context_lines: Optional[int] = None     # None -> config.context_lines
    budget: Optional[int] = None
    reserve: int = 0


@dataclass(frozen=True)
class FilesMode:
    paths: Tuple[str, ...]


@dataclass(frozen=True)
class GrepMode:
    pattern: str


@dataclass(frozen=True)
class SymbolMode:
    name: str


CollectMode = Union[FilesMode, GrepMode, SymbolMode]


@dataclass
class CollectRequest:
    mode: CollectMode
    exclude: List[str] = field(default_factory=list)
    lang: Optional[str] = None
    path: Optional[str] = None
    context_lines: Optional[int] = None
    max_files: Optional[int] = None
    budget: Optional[int] = None
    reserve: int = 0

    @classmethod
    def from_options(
        cls,
        files: Sequence[str] = (),
        grep: Optional[str] = None,
        symbol: Optional[str] = None,
        **kwargs,
    ) -> "CollectRequest":
        """Pick exactly one collection mode from loose CLI options.

        Raises:
            ValidationError: no mode, or more than one mode, was given.
        """
        modes: List[CollectMode] = []
        if files:
            modes.append(FilesMode(tuple(files)))
        if grep is not None:
            modes.append(GrepMode(grep))
        if symbol is not None:
            modes.append(SymbolMode(symbol))

        if not modes:
            raise ValidationError("mode", "one of --files, --grep or --symbol must be specified")
        if len(modes) > 1:
            raise ValidationError("mode", "--files, --grep and --symbol are mutually exclusive")
        if kwargs.get("max_files") is not None and kwargs["max_files"] <= 0:
            raise ValidationError("max_files", "must be greater than 0")

        return cls(mode=modes[0], **kwargs)


@dataclass
class PackRequest:
    bundle_path: Path
    budget: Optional[int] = None
    chars: Optional[int] = None
    reserve: int = 0
    must: List[str] = field(default_factory=list)
    drop: List[str] = field(default_factory=list)


@dataclass
class ContextResult:
    bundle: Bundle
    manifest: Manifest
    included: List[BundleSection] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.manifest.entries


@dataclass
class LanguageStats:
    files: int = 0
    bytes: int = 0
    tokens: int = 0


@dataclass
class RepoStats:
    files: int = 0
    total_bytes: int = 0
    total_tokens: int = 0
    generated_files: int = 0
    by_language: Dict[str, LanguageStats] = field(default_factory=dict)
    file_tokens: List[Tuple[str, int]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ContextEngine:
    """Runs the diff, collect and pack pipelines against one repository."""

    def __init__(
        self,
        config: "Config",
        estimator: Optional[TokenEstimator] = None,
        symbol_finder: Optional[SymbolFinder] = None,
    ):
        self.config = config
        self.root = config.root
        self.estimator = estimator or estimator_for_model(
            config.model, exact=config.estimator == "tiktoken"
        )
        self.symbol_finder = symbol_finder or RegexSymbolFinder()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def diff(self, request: DiffRequest) -> ContextResult:
        """Bundle the snippets touched by a git diff.

        Raises:
            BudgetConfigError: inconsistent budget/reserve.
            GitError: git failed.
            MissingFileError: a changed file is missing from the work tree.
        """
        validate_budget(request.budget, request.reserve)

        diff_files = get_diff(DiffOptions(
            root=self.root,
            rev_range=request.rev_range,
            staged=request.staged,
            untracked=request.untracked,
            since=request.since,
        ))
        if not diff_files:
            return self._empty("no changes found", request.budget, request.reserve)

        snippets = slice_diff_hunks(diff_files, SliceOptions(
            context_lines=self._context_lines(request.context_lines),
            hunks_only=request.hunks_only,
            root=self.root,
        ))
        sections = [self._section(s) for s in snippets]
        scored = rank_snippets(sections, [1] * len(sections), self.config.ranking_weights)

        result = self._select(
            scored,
            budget=request.budget,
            reserve=request.reserve,
            summary=lambda n: _diff_summary(diff_files, n),
            weighted=True,
        )
        logger.debug(f"diff: {len(diff_files)} files, {len(snippets)} snippets")
        return result

    def collect(self, request: CollectRequest) -> ContextResult:
        """Bundle explicit files, grep matches or symbol definitions.

        Raises:
            BudgetConfigError: inconsistent budget/reserve.
            MissingFileError: an explicit file cannot be read.
            PatternError: the grep pattern does not compile.
        """
        validate_budget(request.budget, request.reserve)
        mode = request.mode

        if isinstance(mode, FilesMode):
            sections = self._collect_files(mode.paths)
            candidates = [ScoredSnippet(section=s, score=0.0) for s in sections]
            return self._select(
                candidates,
                budget=request.budget,
                reserve=request.reserve,
                summary=lambda n: f"collected {_plural(len(sections), 'file')} ({_plural(n, 'section')})",
                weighted=False,
            )

        files = self._scan(request)
        if isinstance(mode, GrepMode):
            result = search_files(files, mode.pattern)
            matches = result.matches
            reason = _grep_reason(mode.pattern)
            label = (
                f"grep '{mode.pattern}': {_plural(len(matches), 'match', 'matches')} "
                f"in {_plural(result.files_matched, 'file')}"
            )
        elif isinstance(mode, SymbolMode):
            matches = self.symbol_finder.find_definitions(files, mode.name)
            reason = f"definition of '{mode.name}'"
            label = (
                f"symbol '{mode.name}': {_plural(len(matches), 'definition')} "
                f"in {_plural(len(group_by_file(matches)), 'file')}"
            )
        else:
            raise ValidationError("mode", f"unsupported collect mode {mode!r}")

        if not matches:
            return self._empty("no matching content found", request.budget, request.reserve)

        sections, counts = self._sections_from_matches(
            files, matches, self._context_lines(request.context_lines), request.max_files, reason,
        )
        scored = rank_snippets(sections, counts, self.config.ranking_weights)
        return self._select(
            scored,
            budget=request.budget,
            reserve=request.reserve,
            summary=lambda n: f"{label} ({_plural(n, 'section')})",
            weighted=True,
        )

    def pack(self, request: PackRequest) -> ContextResult:
        """Re-select the sections of a JSON bundle under a new budget.

        Raises:
            BudgetConfigError: inconsistent budget/chars/reserve.
            MissingFileError: the bundle file cannot be read.
            ValidationError: the bundle file is not a JSON bundle.
        """
        validate_budget(request.budget, request.reserve, request.chars)
        source = read_bundle(request.bundle_path)

        if not source.sections:
            return self._empty("no sections in bundle", request.budget, request.reserve)

        candidates = [ScoredSnippet(section=s, score=0.0) for s in source.sections]
        budget = effective_budget(request.budget, request.reserve, self.estimator, request.chars)
        selection = select(candidates, self.estimator, budget, must=request.must, drop=request.drop)

        n = len(selection.included)
        bundle = Bundle(
            summary=f"{_plural(n, 'section')} (packed from {len(source.sections)})",
            sections=selection.included,
        )
        manifest = build_manifest(
            selection.entries, self.estimator.model_name, request.budget, request.reserve,
        )
        return ContextResult(bundle=bundle, manifest=manifest, included=selection.included)

    def repo_stats(self, root: Optional[Path] = None, with_tokens: bool = False) -> RepoStats:
        """File, byte and (optionally) token totals for the repository.

        With ``with_tokens`` every file is read, so files carrying a
        generated-code marker in their header count as generated too.
        """
        files = scan(scan_options_from_config(self.config, root or self.root))
        stats = RepoStats(files=len(files))

        for file in files:
            tokens = 0
            generated = file.is_generated
            if with_tokens:
                try:
                    content = read_text(file)
                except (OSError, UnicodeDecodeError) as e:
                    logger.debug(f"Skipping unreadable file {file.rel_path}: {e}")
                else:
                    tokens = self.estimator.estimate(content)
                    generated = generated or has_generated_marker(content)

            language = file.language or "unknown"
            lang = stats.by_language.setdefault(language, LanguageStats())
            lang.files += 1
            lang.bytes += file.size
            lang.tokens += tokens

            stats.total_bytes += file.size
            stats.total_tokens += tokens
            stats.generated_files += int(generated)
            stats.file_tokens.append((file.rel_path, tokens))

        stats.file_tokens.sort(key=lambda item: (-item[1], item[0]))
        return stats

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _context_lines(self, override: Optional[int]) -> int:
        value = self.config.context_lines if override is None else override
        if value < 0:
            raise ValidationError("context_lines", "must not be negative")
        return value

    def _language(self, path: str) -> str:
        return infer_language(path, self.config.languages)

    def _section(self, snippet: Snippet) -> BundleSection:
        return BundleSection(
            file_path=snippet.file_path,
            language=self._language(snippet.file_path),
            content=snippet.content,
            reason=snippet.reason,
            start_line=snippet.start_line,
            end_line=snippet.end_line,
        )

    def _scan(self, request: CollectRequest) -> List[ScannedFile]:
        options = scan_options_from_config(self.config, self.root)
        options.lang_filter = request.lang
        options.path_filter = request.path
        options.exclude_patterns = list(request.exclude)
        return scan(options)

    def _relative_path(self, abs_path: Path) -> str:
        """Root-relative POSIX path; files outside the root keep their absolute path."""
        resolved = Path(os.path.normpath(abs_path.absolute()))
        try:
            return resolved.relative_to(Path(os.path.normpath(self.root.absolute()))).as_posix()
        except ValueError:
            return resolved.as_posix()

    def _collect_files(self, paths: Sequence[str]) -> List[BundleSection]:
        sections = []
        for rel in paths:
            path = Path(rel)
            abs_path = path if path.is_absolute() else self.root / path
            try:
                content = abs_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise MissingFileError(rel, f"cannot read file: {e}") from e

            display_path = self._relative_path(abs_path)
            sections.append(BundleSection(
                file_path=display_path,
                language=self._language(display_path),
                content=content,
                reason="explicit file",
            ))
        return sections

    def _sections_from_matches(
        self,
        files: Sequence[ScannedFile],
        matches: Sequence[TextMatch],
        context_lines: int,
        max_files: Optional[int],
        reason: Union[str, Callable[[int], str]],
    ) -> Tuple[List[BundleSection], List[int]]:
        """Group matches per file and turn each merged window into a section."""
        by_path = {f.rel_path: f for f in files}
        grouped = group_by_file(matches)
        paths = sorted(grouped)
        if max_files is not None:
            paths = paths[:max_files]

        sections: List[BundleSection] = []
        counts: List[int] = []
        for path in paths:
            scanned = by_path.get(path)
            if scanned is None:
                continue
            try:
                content = read_text(scanned)
            except (OSError, UnicodeDecodeError) as e:
                logger.debug(f"Skipping unreadable file {path}: {e}")
                continue

            anchors = [(m.line_number, m.line_number) for m in grouped[path]]
            pairs = snippets_from_anchors(
                path, split_source_lines(content), anchors, context_lines, reason,
            )
            for snippet, count in pairs:
                sections.append(self._section(snippet))
                counts.append(count)

        return sections, counts

    def _select(
        self,
        candidates: List[ScoredSnippet],
        budget: Optional[int],
        reserve: int,
        summary: Callable[[int], str],
        weighted: bool,
    ) -> ContextResult:
        selection = select(
            candidates, self.estimator, effective_budget(budget, reserve, self.estimator),
        )
        weights = None
        if weighted:
            weights = WeightsUsed(**self.config.ranking_weights.to_dict())
        manifest = build_manifest(
            selection.entries, self.estimator.model_name, budget, reserve, weights=weights,
        )
        bundle = Bundle(summary=summary(len(selection.included)), sections=selection.included)
        return ContextResult(bundle=bundle, manifest=manifest, included=selection.included)

    def _empty(self, summary: str, budget: Optional[int], reserve: int) -> ContextResult:
        return ContextResult(
            bundle=Bundle(summary=summary),
            manifest=build_manifest([], self.estimator.model_name, budget, reserve),
        )


def _grep_reason(pattern: str) -> Callable[[int], str]:
    def reason(count: int) -> str:
        return f"grep {'match' if count == 1 else 'matches'} for '{pattern}'"
    return reason


def _diff_summary(diff_files: List[DiffFile], snippet_count: int) -> str:
    hunks = sum(len(f.hunks) for f in diff_files)
    return (
        f"{_plural(len(diff_files), 'file')} changed, "
        f"{_plural(hunks, 'hunk')}, {_plural(snippet_count, 'snippet')}"
    )


def read_bundle(path: Path) -> Bundle:
    """Load a bundle previously written with ``--format json``.

    Raises:
        MissingFileError: the file cannot be read.
        ValidationError: the file is not a JSON bundle.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MissingFileError(str(path), f"cannot read bundle: {e}") from e

    try:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("top-level value must be an object")
        return Bundle.from_dict(data)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ValidationError("bundle", f"failed to parse '{path}': {e}") from e
