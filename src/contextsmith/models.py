"""Data models for contextsmith."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class FileStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class LineKind(str, Enum):
    CONTEXT = "context"
    ADDED = "added"
    REMOVED = "removed"

    @property
    def marker(self) -> str:
        """The unified-diff prefix character for this kind of line."""
        return {"context": " ", "added": "+", "removed": "-"}[self.value]


@dataclass
class DiffLine:
    kind: LineKind
    content: str                        # text without the leading +/-/space
    old_lineno: Optional[int] = None
    new_lineno: Optional[int] = None

    def render(self) -> str:
        return f"{self.kind.marker}{self.content}"


@dataclass
class DiffHunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str                         # verbatim "@@ ... @@" line
    lines: List[DiffLine] = field(default_factory=list)

    def change_anchors(self) -> List[int]:
        """New-file line numbers touched by added or removed lines.

        Added lines anchor at their own number. A removed line has no
        new-file number, so it anchors where it was removed: the next
        new-side line position.
        """
        anchors = []
        position = self.new_start
        for line in self.lines:
            if line.kind is LineKind.REMOVED:
                anchors.append(max(1, position))
                continue
            if line.new_lineno is not None:
                position = line.new_lineno
            if line.kind is LineKind.ADDED:
                anchors.append(position)
            position += 1
        return anchors

    def change_extent(self) -> Tuple[int, int]:
        """``(first, last)`` changed line in new-file numbering.

        Falls back to the header's new-side span when the hunk holds no
        added or removed lines.
        """
        anchors = self.change_anchors()
        if anchors:
            return min(anchors), max(anchors)
        return self.new_start, self.new_start + max(self.new_count - 1, 0)


@dataclass
class DiffFile:
    path: str
    status: FileStatus = FileStatus.MODIFIED
    old_path: Optional[str] = None      # set only when renamed
    hunks: List[DiffHunk] = field(default_factory=list)


@dataclass(frozen=True)
class Snippet:
    """A presentation-ready excerpt of a file.

    ``start_line``/``end_line`` are 1-based and inclusive. They refer to the
    current file, except for deleted files where they keep the pre-deletion
    numbering.
    """
    file_path: str
    start_line: int
    end_line: int
    content: str
    reason: str


@dataclass(frozen=True)
class BundleSection:
    """Interchange unit between the engine and the renderers."""
    file_path: str
    language: str
    content: str
    reason: str
    start_line: int = 0
    end_line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "language": self.language,
            "content": self.content,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BundleSection":
        return cls(
            file_path=data["file_path"],
            language=data.get("language", ""),
            content=data.get("content", ""),
            reason=data.get("reason", ""),
        )


@dataclass
class Bundle:
    summary: str
    sections: List[BundleSection] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "sections": [s.to_dict() for s in self.sections],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bundle":
        return cls(
            summary=data.get("summary", ""),
            sections=[BundleSection.from_dict(s) for s in data.get("sections", [])],
        )


@dataclass
class ScannedFile:
    """A file discovered by the directory scan."""
    rel_path: str                       # relative to the scan root, "/" separated
    abs_path: Path
    language: str
    is_generated: bool = False
    size: int = 0


@dataclass(frozen=True)
class TextMatch:
    """A single regex match within a file."""
    file_path: str
    line_number: int                    # 1-based
    line_content: str
    column: int                         # 0-based offset of the match in the line
    match_length: int
