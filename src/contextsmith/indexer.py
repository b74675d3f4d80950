"""Regex text search over scanned files."""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Pattern, Sequence

from contextsmith.exceptions import PatternError
from contextsmith.logger import get_logger
from contextsmith.models import ScannedFile, TextMatch

logger = get_logger()


@dataclass
class SearchResult:
    matches: List[TextMatch] = field(default_factory=list)
    files_searched: int = 0
    files_matched: int = 0


def compile_pattern(pattern: str) -> Pattern[str]:
    """Compile a user-supplied regex.

    Raises:
        PatternError: if the pattern is not a valid regular expression.
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise PatternError(pattern, str(e)) from e


def read_text(file: ScannedFile) -> str:
    return file.abs_path.read_text(encoding="utf-8")


def search_content(regex: Pattern[str], content: str, file_path: str) -> List[TextMatch]:
    """Every match of *regex* in *content*, line by line."""
    matches = []
    for line_number, line in enumerate(content.splitlines(), start=1):
        for m in regex.finditer(line):
            matches.append(TextMatch(
                file_path=file_path,
                line_number=line_number,
                line_content=line,
                column=m.start(),
                match_length=m.end() - m.start(),
            ))
    return matches


def search_regex(files: Sequence[ScannedFile], regex: Pattern[str]) -> SearchResult:
    """Search *files* with a compiled regex; unreadable files are skipped."""
    result = SearchResult(files_searched=len(files))
    for file in files:
        try:
            content = read_text(file)
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Skipping unreadable file {file.rel_path}: {e}")
            continue

        file_matches = search_content(regex, content, file.rel_path)
        if file_matches:
            result.files_matched += 1
            result.matches.extend(file_matches)

    logger.debug(
        f"Pattern '{regex.pattern}': {len(result.matches)} matches "
        f"in {result.files_matched}/{result.files_searched} files"
    )
    return result


def search_files(files: Sequence[ScannedFile], pattern: str) -> SearchResult:
    """Compile *pattern* and search *files*.

    Raises:
        PatternError: if *pattern* does not compile. No partial search runs.
    """
    return search_regex(files, compile_pattern(pattern))


def group_by_file(matches: Sequence[TextMatch]) -> Dict[str, List[TextMatch]]:
    """Group matches by path, keeping first-appearance order of the paths."""
    grouped: Dict[str, List[TextMatch]] = {}
    for m in matches:
        grouped.setdefault(m.file_path, []).append(m)
    return grouped
