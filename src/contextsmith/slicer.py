"""Snippet extraction: turn diff hunks or search matches into snippets.

Given parsed diff data the slicer reads source files and extracts minimal
spans around each changed region:

- context expansion: configurable lines above/below each change
- overlap merging: overlapping or adjacent windows in a file collapse
- hunks-only mode: raw hunk text without reading the file

The same expand-and-merge routine (:func:`snippets_from_anchors`) builds
snippets for grep and symbol matches.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from contextsmith.exceptions import MissingFileError
from contextsmith.logger import get_logger
from contextsmith.models import DiffFile, DiffHunk, FileStatus, Snippet
from contextsmith.ranges import LineRange, count_in_range, expand_range, merge_ranges

logger = get_logger()

FileReader = Callable[[str], str]
ReasonSpec = Union[str, Callable[[int], str]]

_STATUS_REASONS = {
    FileStatus.ADDED: "added",
    FileStatus.MODIFIED: "modified in diff",
    FileStatus.DELETED: "deleted",
    FileStatus.RENAMED: "renamed",
}


@dataclass
class SliceOptions:
    context_lines: int = 3
    hunks_only: bool = False
    root: Path = Path(".")


def status_reason(status: FileStatus) -> str:
    """Human-readable provenance string for a file status."""
    return _STATUS_REASONS[status]


def split_source_lines(content: str) -> List[str]:
    """Split file content into lines (index 0 is line 1)."""
    return content.splitlines()


# ---------------------------------------------------------------------------
# Diff slicing
# ---------------------------------------------------------------------------

def slice_diff_hunks(
    diff_files: List[DiffFile],
    options: SliceOptions,
    read_file: Optional[FileReader] = None,
) -> List[Snippet]:
    """Extract snippets for every file in a parsed diff.

    Deleted files and ``hunks_only`` mode emit raw hunk text. Otherwise the
    current file is read once and one snippet is produced per merged
    window.

    Args:
        diff_files: Parsed diff.
        options: Context margin, hunks-only flag and repository root.
        read_file: Optional reader taking a repo-relative path. Defaults to
            reading ``options.root / path`` as UTF-8.

    Raises:
        MissingFileError: a non-deleted file cannot be read.
    """
    reader = read_file or _root_reader(options.root)
    snippets: List[Snippet] = []

    for diff_file in diff_files:
        if diff_file.status is FileStatus.DELETED or options.hunks_only:
            snippets.extend(slice_hunks_only(diff_file))
        else:
            snippets.extend(_slice_with_context(diff_file, options.context_lines, reader))

    return snippets


def slice_hunks_only(diff_file: DiffFile) -> List[Snippet]:
    """One snippet per hunk, holding the hunk lines re-prefixed with +/-/space."""
    total = len(diff_file.hunks)
    base_reason = status_reason(diff_file.status)
    snippets = []
    for i, hunk in enumerate(diff_file.hunks, start=1):
        start, end = _hunk_span(hunk, diff_file.status)
        snippets.append(Snippet(
            file_path=diff_file.path,
            start_line=start,
            end_line=end,
            content="\n".join(line.render() for line in hunk.lines),
            reason=f"{base_reason} (hunk {i}/{total})",
        ))
    return snippets


def _hunk_span(hunk: DiffHunk, status: FileStatus) -> Tuple[int, int]:
    if status is FileStatus.DELETED:
        # Deleted files keep their pre-deletion numbering
        start = max(1, hunk.old_start)
        return start, max(start, hunk.old_start + hunk.old_count - 1)
    # Inclusive end; a pure removal (+N,0) spans just its position
    start = max(1, hunk.new_start)
    return start, max(start, hunk.new_start + hunk.new_count - 1)


def _slice_with_context(
    diff_file: DiffFile,
    context_lines: int,
    reader: FileReader,
) -> List[Snippet]:
    try:
        content = reader(diff_file.path)
    except (OSError, UnicodeDecodeError) as e:
        raise MissingFileError(diff_file.path, f"cannot read file referenced by diff: {e}") from e

    lines = split_source_lines(content)
    if not lines:
        return []

    extents = [hunk.change_extent() for hunk in diff_file.hunks]
    pairs = snippets_from_anchors(
        diff_file.path, lines, extents, context_lines, status_reason(diff_file.status),
    )
    return [snippet for snippet, _ in pairs]


def _root_reader(root: Path) -> FileReader:
    def read(rel_path: str) -> str:
        return (root / rel_path).read_text(encoding="utf-8")
    return read


# ---------------------------------------------------------------------------
# Shared anchor -> snippet routine
# ---------------------------------------------------------------------------

def snippets_from_anchors(
    file_path: str,
    lines: List[str],
    anchors: Iterable[LineRange],
    context_lines: int,
    reason: ReasonSpec,
) -> List[Tuple[Snippet, int]]:
    """Expand anchor ranges, merge them, and slice snippets from *lines*.

    Args:
        file_path: Path recorded on each snippet.
        lines: File content split into lines.
        anchors: ``(start, end)`` ranges to keep; a single line is ``(n, n)``.
        context_lines: Margin added on both sides of each anchor.
        reason: Fixed reason string, or a callable receiving the number of
            anchors that fell inside the snippet.

    Returns:
        ``(snippet, anchor_count)`` pairs sorted by start line.
    """
    total_lines = len(lines)
    if total_lines == 0:
        return []

    anchors = list(anchors)
    windows = merge_ranges(
        expand_range(start, end, context_lines, total_lines) for start, end in anchors
    )

    results = []
    for start, end in windows:
        count = count_in_range((a_start for a_start, _ in anchors), (start, end))
        text = reason(count) if callable(reason) else reason
        results.append((
            Snippet(
                file_path=file_path,
                start_line=start,
                end_line=end,
                content="\n".join(lines[start - 1:end]),
                reason=text,
            ),
            count,
        ))

    logger.debug(f"{file_path}: {len(anchors)} anchor(s) -> {len(results)} snippet(s)")
    return results
