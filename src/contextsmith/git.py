"""Git integration: safe wrappers around the git CLI and a unified diff parser.

This module is the only place that talks to git. Everything downstream
works with the parsed :class:`~contextsmith.models.DiffFile` records.
"""

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from contextsmith.exceptions import GitError
from contextsmith.logger import get_logger
from contextsmith.models import DiffFile, DiffHunk, DiffLine, FileStatus, LineKind

logger = get_logger()

NO_NEWLINE_MARKER = "\\ No newline at end of file"

_HUNK_RANGE_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


@dataclass
class DiffOptions:
    root: Path
    rev_range: Optional[str] = None     # e.g. "HEAD~3..HEAD"
    staged: bool = False
    untracked: bool = False
    since: Optional[str] = None         # e.g. "2h", "2024-01-01"


# ---------------------------------------------------------------------------
# Git command execution
# ---------------------------------------------------------------------------

def run_git(args: List[str], cwd: Path) -> str:
    """Run a git command and return its stdout.

    Raises:
        GitError: if git is missing or exits non-zero.
    """
    try:
        result = subprocess.run(
            ["git"] + args,
            capture_output=True,
            text=True,
            cwd=str(cwd),
        )
    except OSError as e:
        raise GitError(f"failed to execute git: {e}") from e

    if result.returncode != 0:
        stderr = result.stderr.strip()
        raise GitError(stderr or f"git exited with status {result.returncode}")

    return result.stdout


def verify_git_repo(root: Path) -> None:
    """Raise GitError unless *root* is inside a git work tree."""
    run_git(["rev-parse", "--git-dir"], root)


def get_diff(options: DiffOptions) -> List[DiffFile]:
    """Run ``git diff`` according to *options* and parse the result."""
    verify_git_repo(options.root)

    args = ["diff", "--no-color", "-u"]
    if options.staged:
        args.append("--cached")

    if options.rev_range:
        args.append(options.rev_range)
    elif options.since:
        args.append(_resolve_since_rev(options.root, options.since))

    raw = run_git(args, options.root)
    files = parse_unified_diff(raw)
    logger.debug(f"git diff produced {len(files)} file(s)")

    if options.untracked:
        for path in _untracked_files(options.root):
            untracked = _untracked_as_added(options.root, path)
            if untracked is not None:
                files.append(untracked)

    return files


def _resolve_since_rev(root: Path, since: str) -> str:
    """Resolve a ``--since`` value to a ``<sha>..HEAD`` range."""
    base = run_git(["rev-list", "-1", f"--before={since}", "HEAD"], root).strip()
    if not base:
        raise GitError(f"no commits found before '{since}'")
    return f"{base}..HEAD"


def _untracked_files(root: Path) -> List[str]:
    output = run_git(["ls-files", "--others", "--exclude-standard"], root)
    return [line for line in output.splitlines() if line]


def _untracked_as_added(root: Path, rel_path: str) -> Optional[DiffFile]:
    """Synthesize an all-added diff for an untracked file.

    Returns None for empty, unreadable or non-UTF-8 (binary) files.
    """
    try:
        content = (root / rel_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Skipping unreadable untracked file {rel_path}: {e}")
        return None

    source_lines = _split_lines(content)
    if not source_lines:
        return None

    count = len(source_lines)
    lines = [
        DiffLine(kind=LineKind.ADDED, content=text, new_lineno=i)
        for i, text in enumerate(source_lines, start=1)
    ]
    hunk = DiffHunk(
        old_start=0, old_count=0, new_start=1, new_count=count,
        header=f"@@ -0,0 +1,{count} @@",
        lines=lines,
    )
    return DiffFile(path=rel_path, status=FileStatus.ADDED, hunks=[hunk])


# ---------------------------------------------------------------------------
# Unified diff parser
# ---------------------------------------------------------------------------

class _DiffParser:
    """Single-pass, line-oriented state machine over ``git diff -u`` output.

    Never raises: malformed input degrades to whatever structure can be
    recovered.
    """

    def __init__(self) -> None:
        self.files: List[DiffFile] = []
        self.current_file: Optional[DiffFile] = None
        self.current_hunk: Optional[DiffHunk] = None
        self.old_lineno = 0
        self.new_lineno = 0
        # Lines still expected by the open hunk's header counts
        self.old_remaining = 0
        self.new_remaining = 0

    def feed(self, line: str) -> None:
        if line.startswith("diff --git "):
            self._flush_file()
            self._open_file(line)
            return

        if line.startswith("@@ "):
            self._flush_hunk()
            self._open_hunk(line)
            return

        if not self._in_hunk_body():
            if self._handle_file_header(line):
                return

        if self.current_hunk is not None:
            self._add_content_line(line)

    def finish(self) -> List[DiffFile]:
        self._flush_file()
        return self.files

    # -- file level ---------------------------------------------------------

    def _open_file(self, line: str) -> None:
        a_path, b_path = parse_diff_header(line)
        renamed = a_path != b_path
        self.current_file = DiffFile(
            path=b_path,
            status=FileStatus.RENAMED if renamed else FileStatus.MODIFIED,
            old_path=a_path if renamed else None,
        )

    def _handle_file_header(self, line: str) -> bool:
        """Consume ``---``/``+++`` lines. Returns True if the line was one."""
        if line.startswith("--- /dev/null"):
            self._set_status(FileStatus.ADDED)
            return True
        if line.startswith("+++ /dev/null"):
            self._set_status(FileStatus.DELETED)
            return True
        # Paths were already taken from the "diff --git" header
        return line.startswith("--- ") or line.startswith("+++ ")

    def _set_status(self, status: FileStatus) -> None:
        if self.current_file is None:
            return
        self.current_file.status = status
        self.current_file.old_path = None

    def _flush_file(self) -> None:
        self._flush_hunk()
        if self.current_file is not None:
            self.files.append(self.current_file)
            self.current_file = None

    # -- hunk level ---------------------------------------------------------

    def _open_hunk(self, line: str) -> None:
        hunk = parse_hunk_header(line)
        if hunk is None:
            logger.debug(f"Ignoring malformed hunk header: {line!r}")
            return
        self.current_hunk = hunk
        self.old_lineno = hunk.old_start
        self.new_lineno = hunk.new_start
        self.old_remaining = hunk.old_count
        self.new_remaining = hunk.new_count

    def _in_hunk_body(self) -> bool:
        return self.current_hunk is not None and (
            self.old_remaining > 0 or self.new_remaining > 0
        )

    def _flush_hunk(self) -> None:
        if self.current_hunk is not None and self.current_file is not None:
            self.current_file.hunks.append(self.current_hunk)
        self.current_hunk = None

    def _add_content_line(self, line: str) -> None:
        marker = line[:1]
        if marker == "+":
            self.current_hunk.lines.append(DiffLine(
                kind=LineKind.ADDED, content=line[1:], new_lineno=self.new_lineno,
            ))
            self.new_lineno += 1
            self.new_remaining -= 1
        elif marker == "-":
            self.current_hunk.lines.append(DiffLine(
                kind=LineKind.REMOVED, content=line[1:], old_lineno=self.old_lineno,
            ))
            self.old_lineno += 1
            self.old_remaining -= 1
        elif line == NO_NEWLINE_MARKER:
            pass
        else:
            # A leading space marks context; anything else is treated as
            # context too so truncated whitespace does not break numbering.
            content = line[1:] if marker == " " else line
            self.current_hunk.lines.append(DiffLine(
                kind=LineKind.CONTEXT,
                content=content,
                old_lineno=self.old_lineno,
                new_lineno=self.new_lineno,
            ))
            self.old_lineno += 1
            self.new_lineno += 1
            self.old_remaining -= 1
            self.new_remaining -= 1


def parse_unified_diff(text: str) -> List[DiffFile]:
    """Parse the full output of ``git diff -u`` into DiffFile records.

    Handles ``diff --git``, ``---``/``+++`` and ``@@`` headers, rename
    detection and added/deleted status. Multiple files per stream are
    supported; empty input yields an empty list.
    """
    parser = _DiffParser()
    for line in _split_lines(text):
        parser.feed(line)
    return parser.finish()


def parse_diff_header(line: str) -> Tuple[str, str]:
    """Extract ``(a_path, b_path)`` from a ``diff --git a/x b/y`` line."""
    rest = line[len("diff --git "):] if line.startswith("diff --git ") else line
    a_part, sep, b_part = rest.partition(" b/")
    a_path = a_part[2:] if a_part.startswith("a/") else a_part
    return a_path, b_part if sep else a_path


def parse_hunk_header(line: str) -> Optional[DiffHunk]:
    """Parse ``@@ -10,7 +10,8 @@ fn main()`` into an empty DiffHunk.

    A missing count defaults to 1 (``@@ -1 +1 @@``). Returns None when the
    header cannot be parsed.
    """
    match = _HUNK_RANGE_RE.match(line)
    if not match:
        return None
    old_start, old_count, new_start, new_count = match.groups()
    return DiffHunk(
        old_start=int(old_start),
        old_count=int(old_count) if old_count is not None else 1,
        new_start=int(new_start),
        new_count=int(new_count) if new_count is not None else 1,
        header=line,
    )


def _split_lines(text: str) -> List[str]:
    """Split on newlines like a line iterator: no trailing empty line, CR stripped."""
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]
