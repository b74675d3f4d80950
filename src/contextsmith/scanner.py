"""File discovery with .gitignore and config-based filtering."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional

from pathspec import PathSpec

from contextsmith.logger import get_logger
from contextsmith.models import ScannedFile

if TYPE_CHECKING:
    from contextsmith.config import Config

logger = get_logger()

# Extension to language mapping
LANGUAGE_EXTENSIONS = {
    "rs": "rust",
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "py": "python",
    "go": "go",
    "rb": "ruby",
    "java": "java",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "hpp": "cpp",
    "swift": "swift",
    "kt": "kotlin",
    "kts": "kotlin",
    "sh": "bash",
    "bash": "bash",
    "zsh": "bash",
    "md": "markdown",
    "toml": "toml",
    "yaml": "yaml",
    "yml": "yaml",
    "json": "json",
    "xml": "xml",
    "html": "html",
    "htm": "html",
    "css": "css",
    "sql": "sql",
    "graphql": "graphql",
    "gql": "graphql",
    "proto": "protobuf",
    "tf": "hcl",
    "lock": "toml",
}

# Extensionless files recognised by name
LANGUAGE_FILENAMES = {
    "Dockerfile": "dockerfile",
    "Containerfile": "dockerfile",
    "Makefile": "makefile",
    "GNUmakefile": "makefile",
    "Justfile": "makefile",
    "justfile": "makefile",
    "CMakeLists.txt": "cmake",
    ".gitignore": "gitignore",
    ".dockerignore": "gitignore",
    ".prettierignore": "gitignore",
    ".eslintignore": "gitignore",
    ".env": "dotenv",
    ".env.local": "dotenv",
    ".env.example": "dotenv",
    "Gemfile": "ruby",
    "Rakefile": "ruby",
    "Vagrantfile": "ruby",
}

GENERATED_MARKERS = ("@generated", "do not edit", "auto-generated", "automatically generated")

# Never descended into, regardless of .gitignore
ALWAYS_SKIP_DIRS = {".git"}


@dataclass
class ScanOptions:
    root: Path
    ignore_patterns: List[str] = field(default_factory=list)
    generated_patterns: List[str] = field(default_factory=list)
    lang_filter: Optional[str] = None
    path_filter: Optional[str] = None
    exclude_patterns: List[str] = field(default_factory=list)
    languages: Dict[str, List[str]] = field(default_factory=dict)
    use_gitignore: bool = True


def scan_options_from_config(config: "Config", root: Optional[Path] = None) -> ScanOptions:
    """Build scan options from *config*, scanning *root* or the config root."""
    return ScanOptions(
        root=root or config.root,
        ignore_patterns=list(config.ignore),
        generated_patterns=list(config.generated),
        languages={k: list(v) for k, v in config.languages.items()},
    )


def infer_language(path: str, languages: Optional[Dict[str, List[str]]] = None) -> str:
    """Infer a language identifier from *path*; "" when unknown.

    Args:
        path: File path, "/" separated.
        languages: Extra ``{language: [extensions]}`` mappings that take
            precedence over the built-in table.
    """
    filename = path.rsplit("/", 1)[-1]
    ext = filename.rsplit(".", 1)[-1] if "." in filename else ""

    if ext and languages:
        for language, extensions in languages.items():
            if ext in extensions:
                return language

    if ext in LANGUAGE_EXTENSIONS:
        return LANGUAGE_EXTENSIONS[ext]

    return LANGUAGE_FILENAMES.get(filename, "")


def build_pathspec(patterns: List[str]) -> PathSpec:
    """Build a gitwildmatch pathspec from *patterns*."""
    return PathSpec.from_lines("gitwildmatch", patterns)


def is_generated_file(rel_path: str, patterns: List[str]) -> bool:
    """Check whether *rel_path* matches any generated-code pattern."""
    return bool(patterns) and build_pathspec(patterns).match_file(rel_path)


def has_generated_marker(content: str) -> bool:
    """Look for generated-code markers in the first 10 lines of *content*."""
    header = "\n".join(content.splitlines()[:10]).lower()
    return any(marker in header for marker in GENERATED_MARKERS)


def _read_gitignore(root: Path) -> List[str]:
    gitignore = root / ".gitignore"
    if not gitignore.is_file():
        return []
    try:
        return gitignore.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Could not read {gitignore}: {e}")
        return []


def _walk(root: Path, skip: PathSpec) -> Iterator[Path]:
    """Yield files under *root*, pruning directories *skip* matches."""
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"

        dirnames[:] = sorted(
            d for d in dirnames
            if d not in ALWAYS_SKIP_DIRS and not skip.match_file(f"{prefix}{d}/")
        )
        for name in sorted(filenames):
            yield current / name


def scan(options: ScanOptions) -> List[ScannedFile]:
    """Walk ``options.root`` and return the discoverable files.

    Honours the root ``.gitignore``, config ignore patterns and CLI
    excludes (all gitwildmatch), then the optional language and path
    filters. Results are sorted by relative path.
    """
    root = options.root.resolve()
    skip = build_pathspec(
        (_read_gitignore(root) if options.use_gitignore else [])
        + list(options.ignore_patterns)
        + list(options.exclude_patterns)
    )
    generated = build_pathspec(options.generated_patterns)
    path_filter = build_pathspec([options.path_filter]) if options.path_filter else None

    logger.debug(f"Scanning filesystem: {root}")

    files: List[ScannedFile] = []
    for path in _walk(root, skip):
        if not path.is_file():
            continue

        rel_path = path.relative_to(root).as_posix()
        if skip.match_file(rel_path):
            continue

        language = infer_language(rel_path, options.languages)
        if options.lang_filter and language.lower() != options.lang_filter.lower():
            continue
        if path_filter is not None and not path_filter.match_file(rel_path):
            continue

        try:
            size = path.stat().st_size
        except OSError:
            size = 0

        files.append(ScannedFile(
            rel_path=rel_path,
            abs_path=path,
            language=language,
            is_generated=generated.match_file(rel_path),
            size=size,
        ))

    files.sort(key=lambda f: f.rel_path)
    logger.debug(f"Discovered {len(files)} files")
    return files
