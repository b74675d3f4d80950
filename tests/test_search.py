"""Tests for scanning, text search and symbol lookup."""

import re
import shutil
import tempfile
from pathlib import Path

import pytest

from contextsmith.exceptions import PatternError
from contextsmith.indexer import (
    compile_pattern,
    group_by_file,
    search_content,
    search_files,
)
from contextsmith.models import ScannedFile
from contextsmith.scanner import (
    ScanOptions,
    has_generated_marker,
    infer_language,
    is_generated_file,
    scan,
)
from contextsmith.symbols import RegexSymbolFinder, build_symbol_pattern


@pytest.fixture
def project():
    """A small project tree with ignored and generated files."""
    temp = Path(tempfile.mkdtemp()).resolve()
    files = {
        "src/main.rs": "fn main() {\n    run();\n}\n",
        "src/lib.rs": "pub fn run() {\n    helper();\n}\n\nfn helper() {}\n",
        "app/api.py": "def handler(request):\n    return run(request)\n",
        "app/api_pb2.py": "# generated\nclass Msg: pass\n",
        "node_modules/pkg/index.js": "function run() {}\n",
        "build/out.txt": "artifact\n",
        "notes/secret.log": "run run run\n",
        ".gitignore": "*.log\n",
    }
    for rel, content in files.items():
        path = temp / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    yield temp
    shutil.rmtree(temp)


def options(root: Path, **kwargs) -> ScanOptions:
    return ScanOptions(
        root=root,
        ignore_patterns=["node_modules", "build"],
        generated_patterns=["*_pb2.py"],
        **kwargs,
    )


class TestScan:
    """Tests for scan."""

    def test_ignores_and_sorts(self, project):
        """Ignored directories and .gitignore matches are skipped."""
        paths = [f.rel_path for f in scan(options(project))]

        assert paths == [".gitignore", "app/api.py", "app/api_pb2.py", "src/lib.rs", "src/main.rs"]

    def test_metadata(self, project):
        """Scanned files carry language, size and absolute path."""
        by_path = {f.rel_path: f for f in scan(options(project))}
        lib = by_path["src/lib.rs"]

        assert lib.language == "rust"
        assert lib.abs_path == project / "src" / "lib.rs"
        assert lib.size == len((project / "src" / "lib.rs").read_bytes())
        assert by_path["app/api_pb2.py"].is_generated
        assert not by_path["app/api.py"].is_generated

    def test_lang_filter(self, project):
        """A language filter keeps only that language."""
        paths = [f.rel_path for f in scan(options(project, lang_filter="Python"))]

        assert paths == ["app/api.py", "app/api_pb2.py"]

    def test_path_filter(self, project):
        """A path pattern narrows the scan."""
        paths = [f.rel_path for f in scan(options(project, path_filter="src/*"))]

        assert paths == ["src/lib.rs", "src/main.rs"]

    def test_exclude_patterns(self, project):
        """Extra exclude patterns apply on top of the config."""
        paths = [f.rel_path for f in scan(options(project, exclude_patterns=["*.rs"]))]

        assert "src/lib.rs" not in paths
        assert "app/api.py" in paths

    def test_gitignore_can_be_disabled(self, project):
        """Without .gitignore handling its patterns no longer apply."""
        paths = [f.rel_path for f in scan(options(project, use_gitignore=False))]

        assert "notes/secret.log" in paths


class TestLanguageAndGenerated:
    """Tests for language inference and generated-file detection."""

    @pytest.mark.parametrize("path,language", [
        ("src/main.rs", "rust"),
        ("app.ts", "typescript"),
        ("index.js", "javascript"),
        ("script.py", "python"),
        ("config.toml", "toml"),
        ("Dockerfile", "dockerfile"),
        ("sub/Makefile", "makefile"),
        (".gitignore", "gitignore"),
        ("README", ""),
        ("data.bin", ""),
    ])
    def test_infer_language(self, path, language):
        """Extensions and well-known filenames map to languages."""
        assert infer_language(path) == language

    def test_config_languages_take_precedence(self):
        """Configured mappings override the built-in table."""
        assert infer_language("view.vue", {"vue": ["vue"]}) == "vue"
        assert infer_language("a.js", {"node": ["js"]}) == "node"

    def test_generated_marker(self):
        """Markers in the first lines flag generated content."""
        assert has_generated_marker("// Code generated by protoc. DO NOT EDIT.\npackage x\n")
        assert has_generated_marker("# @generated\n")
        assert not has_generated_marker("def main():\n    pass\n")

    def test_generated_marker_only_in_header(self):
        """Markers after line 10 do not count."""
        content = "x\n" * 12 + "# auto-generated\n"
        assert not has_generated_marker(content)

    def test_is_generated_file(self):
        """Generated patterns match by gitwildmatch."""
        assert is_generated_file("proto/foo.pb.go", ["*.pb.go"])
        assert is_generated_file("ui/x.generated.ts", ["*.generated.*"])
        assert not is_generated_file("main.go", ["*.pb.go"])
        assert not is_generated_file("main.go", [])


class TestIndexer:
    """Tests for regex search."""

    def test_search_content(self):
        """Matches carry line number, line text, column and length."""
        regex = re.compile(r"fn \w+")
        matches = search_content(regex, "fn main() {\n    body\n}\nfn helper() {}", "t.rs")

        assert [m.line_number for m in matches] == [1, 4]
        assert matches[0].line_content == "fn main() {"
        assert (matches[0].column, matches[0].match_length) == (0, 7)

    def test_multiple_matches_per_line(self):
        """Each occurrence on a line is its own match."""
        matches = search_content(re.compile(r"\bfoo\b"), "let foo = foo + foo;", "t.rs")

        assert len(matches) == 3
        assert [m.column for m in matches] == [4, 10, 16]

    def test_invalid_pattern(self):
        """A bad regex raises PatternError naming the pattern."""
        with pytest.raises(PatternError) as exc:
            compile_pattern("(unclosed")
        assert "(unclosed" in str(exc.value)

    def test_search_files(self, project):
        """search_files counts searched and matched files."""
        files = scan(options(project))
        result = search_files(files, r"\brun\b")

        assert result.files_searched == len(files)
        assert result.files_matched == 3
        assert {m.file_path for m in result.matches} == {"src/main.rs", "src/lib.rs", "app/api.py"}

    def test_unreadable_files_are_skipped(self, project):
        """Binary or missing files are skipped without error."""
        (project / "blob.bin").write_bytes(b"\xff\xfe\x00run")
        files = [
            ScannedFile("blob.bin", project / "blob.bin", ""),
            ScannedFile("gone.rs", project / "gone.rs", "rust"),
            ScannedFile("src/lib.rs", project / "src" / "lib.rs", "rust"),
        ]
        result = search_files(files, "run")

        assert result.files_matched == 1
        assert result.files_searched == 3

    def test_search_files_bad_pattern(self, project):
        """No search runs when the pattern is invalid."""
        with pytest.raises(PatternError):
            search_files(scan(options(project)), "[")

    def test_group_by_file_keeps_order(self):
        """Grouping keeps first-appearance order of paths."""
        regex = re.compile("x")
        matches = (
            search_content(regex, "x", "b.py")
            + search_content(regex, "x\nx", "a.py")
            + search_content(regex, "x", "b.py")
        )
        grouped = group_by_file(matches)

        assert list(grouped) == ["b.py", "a.py"]
        assert len(grouped["b.py"]) == 2
        assert len(grouped["a.py"]) == 2


class TestSymbols:
    """Tests for symbol definition lookup."""

    def test_rust_functions(self):
        """Rust fn definitions match, prefixes included, whole word only."""
        regex = re.compile(build_symbol_pattern("run"))

        assert regex.search("fn run() {")
        assert regex.search("pub fn run() {")
        assert regex.search("pub async fn run() {")
        assert not regex.search("fn running() {")
        assert not regex.search("run();")

    def test_types(self):
        """Struct and class definitions match."""
        regex = re.compile(build_symbol_pattern("Config"))

        assert regex.search("struct Config {")
        assert regex.search("pub struct Config {")
        assert regex.search("class Config:")
        assert regex.search("export default class Config {")

    def test_python_def(self):
        """def and async def match."""
        regex = re.compile(build_symbol_pattern("process"))

        assert regex.search("def process(data):")
        assert regex.search("    async def process(data):")

    def test_special_characters_escaped(self):
        """Symbol names are matched literally."""
        regex = re.compile(build_symbol_pattern("a.b"))

        assert not regex.search("fn axb() {}")

    def test_finder_across_files(self, project):
        """Only definitions are found, not call sites."""
        matches = RegexSymbolFinder().find_definitions(scan(options(project)), "run")

        assert [(m.file_path, m.line_number) for m in matches] == [("src/lib.rs", 1)]
