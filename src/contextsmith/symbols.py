"""Symbol definition lookup.

:class:`RegexSymbolFinder` matches common definition keywords across
languages. It is a heuristic; anything implementing :class:`SymbolFinder`
(an AST-aware finder, for instance) can replace it.
"""

import re
from typing import List, Protocol, Sequence

from contextsmith.indexer import compile_pattern, search_regex
from contextsmith.models import ScannedFile, TextMatch

_DEFINITION_PREFIX = (
    r"(?:^|\s)"
    r"(?:pub\s+(?:(?:unsafe\s+)?(?:async\s+)?)?|export\s+(?:default\s+)?|(?:async\s+)?)?"
    r"(?:fn|struct|enum|trait|type|const|static|mod|impl|def|class|function|func"
    r"|interface|module|let|var)\s+"
)


class SymbolFinder(Protocol):
    def find_definitions(self, files: Sequence[ScannedFile], symbol: str) -> List[TextMatch]:
        ...


def build_symbol_pattern(symbol: str) -> str:
    """Regex matching a definition of *symbol* (whole word)."""
    return rf"{_DEFINITION_PREFIX}{re.escape(symbol)}\b"


class RegexSymbolFinder:
    """Find definitions by keyword regex; unreadable files are skipped."""

    def find_definitions(self, files: Sequence[ScannedFile], symbol: str) -> List[TextMatch]:
        regex = compile_pattern(build_symbol_pattern(symbol))
        return search_regex(files, regex).matches
