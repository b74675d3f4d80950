"""Tests for the unified diff parser and the git wrapper."""

import os
import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

from contextsmith.exceptions import GitError
from contextsmith.git import (
    DiffOptions,
    get_diff,
    parse_diff_header,
    parse_hunk_header,
    parse_unified_diff,
    run_git,
    verify_git_repo,
)
from contextsmith.models import FileStatus, LineKind


MODIFIED_DIFF = """\
diff --git a/src/main.rs b/src/main.rs
index 1234567..89abcde 100644
--- a/src/main.rs
+++ b/src/main.rs
@@ -1,5 +1,6 @@
 fn main() {
-    println!("old");
+    println!("new1");
+    println!("new2");
     let x = 1;
     let y = 2;
 }
"""

ADDED_DIFF = """\
diff --git a/src/new.rs b/src/new.rs
new file mode 100644
index 0000000..1234567
--- /dev/null
+++ b/src/new.rs
@@ -0,0 +1,3 @@
+fn a() {}
+fn b() {}
+fn c() {}
"""

DELETED_DIFF = """\
diff --git a/src/old.rs b/src/old.rs
deleted file mode 100644
index 1234567..0000000
--- a/src/old.rs
+++ /dev/null
@@ -1,2 +0,0 @@
-fn gone() {}
-fn also_gone() {}
"""

RENAMED_DIFF = """\
diff --git a/old.rs b/new.rs
similarity index 100%
rename from old.rs
rename to new.rs
"""


class TestParseUnifiedDiff:
    """Tests for parse_unified_diff."""

    def test_empty_input(self):
        """Empty input produces no files."""
        assert parse_unified_diff("") == []

    def test_single_hunk_modification(self):
        """A single-hunk change is Modified with header counts parsed."""
        files = parse_unified_diff(MODIFIED_DIFF)

        assert len(files) == 1
        f = files[0]
        assert f.path == "src/main.rs"
        assert f.status == FileStatus.MODIFIED
        assert f.old_path is None
        assert len(f.hunks) == 1

        hunk = f.hunks[0]
        assert (hunk.old_start, hunk.old_count) == (1, 5)
        assert (hunk.new_start, hunk.new_count) == (1, 6)
        assert hunk.header == "@@ -1,5 +1,6 @@"

    def test_added_file(self):
        """--- /dev/null marks the file Added; every line is Added."""
        files = parse_unified_diff(ADDED_DIFF)

        assert files[0].status == FileStatus.ADDED
        lines = files[0].hunks[0].lines
        assert len(lines) == 3
        assert all(line.kind == LineKind.ADDED for line in lines)
        assert [line.new_lineno for line in lines] == [1, 2, 3]

    def test_deleted_file(self):
        """+++ /dev/null marks the file Deleted; every line is Removed."""
        files = parse_unified_diff(DELETED_DIFF)

        assert files[0].status == FileStatus.DELETED
        lines = files[0].hunks[0].lines
        assert len(lines) == 2
        assert all(line.kind == LineKind.REMOVED for line in lines)
        assert [line.old_lineno for line in lines] == [1, 2]
        assert all(line.new_lineno is None for line in lines)

    def test_renamed_file(self):
        """Differing a/ and b/ paths mean Renamed with old_path set."""
        files = parse_unified_diff(RENAMED_DIFF)

        assert len(files) == 1
        assert files[0].status == FileStatus.RENAMED
        assert files[0].path == "new.rs"
        assert files[0].old_path == "old.rs"
        assert files[0].hunks == []

    def test_old_path_only_for_renames(self):
        """old_path is set exactly when the status is Renamed."""
        text = MODIFIED_DIFF + ADDED_DIFF + DELETED_DIFF + RENAMED_DIFF
        for f in parse_unified_diff(text):
            assert (f.old_path is not None) == (f.status == FileStatus.RENAMED)

    def test_multiple_files(self):
        """Several files in one stream are all returned in order."""
        files = parse_unified_diff(MODIFIED_DIFF + ADDED_DIFF + DELETED_DIFF)

        assert [f.path for f in files] == ["src/main.rs", "src/new.rs", "src/old.rs"]
        assert [f.status for f in files] == [
            FileStatus.MODIFIED, FileStatus.ADDED, FileStatus.DELETED,
        ]

    def test_line_counters(self):
        """Line numbers advance per kind from the hunk header starts."""
        text = (
            "diff --git a/src/main.rs b/src/main.rs\n"
            "@@ -1,5 +1,6 @@\n"
            "fn main() {\n"
            "-old\n"
            "+new1\n"
            "+new2\n"
            "    x\n"
            "    y\n"
            "}\n"
        )
        lines = parse_unified_diff(text)[0].hunks[0].lines

        first = lines[0]
        assert first.kind == LineKind.CONTEXT
        assert (first.old_lineno, first.new_lineno) == (1, 1)

        removed = lines[1]
        assert removed.kind == LineKind.REMOVED
        assert (removed.old_lineno, removed.new_lineno) == (2, None)

        added = [line for line in lines if line.kind == LineKind.ADDED]
        assert [a.old_lineno for a in added] == [None, None]
        assert [a.new_lineno for a in added] == [2, 3]

        # Context after the change continues both counters
        assert (lines[4].old_lineno, lines[4].new_lineno) == (3, 4)

    def test_unprefixed_line_is_context(self):
        """A line without a marker counts as context and keeps its text."""
        text = "diff --git a/a b/a\n@@ -1,2 +1,2 @@\nbare\n x\n"
        lines = parse_unified_diff(text)[0].hunks[0].lines

        assert lines[0].kind == LineKind.CONTEXT
        assert lines[0].content == "bare"
        assert lines[1].content == "x"

    def test_no_newline_marker_swallowed(self):
        """The 'No newline at end of file' marker is not a line."""
        text = (
            "diff --git a/a.txt b/a.txt\n"
            "@@ -1 +1 @@\n"
            "-old\n"
            "\\ No newline at end of file\n"
            "+new\n"
            "\\ No newline at end of file\n"
        )
        lines = parse_unified_diff(text)[0].hunks[0].lines

        assert [line.kind for line in lines] == [LineKind.REMOVED, LineKind.ADDED]

    def test_hunk_without_lines_is_kept(self):
        """A header with no content lines still yields a hunk."""
        text = (
            "diff --git a/a.txt b/a.txt\n"
            "@@ -3,0 +4,0 @@\n"
            "diff --git a/b.txt b/b.txt\n"
            "@@ -1 +1 @@\n"
            "-x\n"
            "+y\n"
        )
        files = parse_unified_diff(text)

        assert len(files) == 2
        assert len(files[0].hunks) == 1
        assert files[0].hunks[0].lines == []

    def test_multiple_hunks_reset_counters(self):
        """Each hunk header resets the line counters."""
        text = (
            "diff --git a/a.txt b/a.txt\n"
            "@@ -1,2 +1,2 @@\n"
            " one\n"
            "-two\n"
            "+TWO\n"
            "@@ -10,2 +10,2 @@\n"
            " ten\n"
            "-eleven\n"
            "+ELEVEN\n"
        )
        hunks = parse_unified_diff(text)[0].hunks

        assert len(hunks) == 2
        assert hunks[1].lines[0].old_lineno == 10
        assert hunks[1].lines[2].new_lineno == 11

    def test_removed_line_looking_like_header(self):
        """A removed '-- x' line inside a hunk is content, not a file header."""
        text = (
            "diff --git a/q.sql b/q.sql\n"
            "--- a/q.sql\n"
            "+++ b/q.sql\n"
            "@@ -1,2 +1,1 @@\n"
            "--- a comment\n"
            " select 1;\n"
        )
        f = parse_unified_diff(text)[0]

        assert f.status == FileStatus.MODIFIED
        lines = f.hunks[0].lines
        assert lines[0].kind == LineKind.REMOVED
        assert lines[0].content == "-- a comment"

    def test_crlf_input(self):
        """Carriage returns are stripped from line ends."""
        text = MODIFIED_DIFF.replace("\n", "\r\n")
        lines = parse_unified_diff(text)[0].hunks[0].lines

        assert lines[0].content == "fn main() {"


class TestHeaderParsing:
    """Tests for the header helpers."""

    def test_parse_diff_header(self):
        """a/ and b/ paths are split apart."""
        assert parse_diff_header("diff --git a/src/x.py b/src/x.py") == ("src/x.py", "src/x.py")

    def test_parse_hunk_header_default_counts(self):
        """Omitted counts default to 1."""
        hunk = parse_hunk_header("@@ -1 +1 @@")

        assert (hunk.old_start, hunk.old_count, hunk.new_start, hunk.new_count) == (1, 1, 1, 1)

    def test_parse_hunk_header_with_section(self):
        """Trailing section text after the second @@ is allowed."""
        hunk = parse_hunk_header("@@ -10,7 +12,8 @@ def handler():")

        assert (hunk.old_start, hunk.old_count) == (10, 7)
        assert (hunk.new_start, hunk.new_count) == (12, 8)
        assert hunk.lines == []

    def test_parse_hunk_header_malformed(self):
        """Garbage headers return None."""
        assert parse_hunk_header("@@ nonsense @@") is None


class TestChangeAnchors:
    """Tests for DiffHunk.change_anchors / change_extent."""

    def test_extent_ignores_context(self):
        """The extent covers changed lines, not the header span."""
        text = (
            "diff --git a/a b/a\n"
            "@@ -7,7 +7,7 @@\n"
            " 7\n 8\n 9\n-10\n+ten\n 11\n 12\n 13\n"
        )
        hunk = parse_unified_diff(text)[0].hunks[0]

        assert hunk.change_extent() == (10, 10)

    def test_pure_removal_anchors_at_new_position(self):
        """A removed line anchors where it used to sit in the new file."""
        text = (
            "diff --git a/a b/a\n"
            "@@ -4,3 +4,2 @@\n"
            " 4\n-5\n 6\n"
        )
        hunk = parse_unified_diff(text)[0].hunks[0]

        assert hunk.change_anchors() == [5]

    def test_extent_falls_back_to_header(self):
        """Without changed lines the header's new span is used."""
        hunk = parse_hunk_header("@@ -3,4 +3,4 @@")

        assert hunk.change_extent() == (3, 6)


git_available = shutil.which("git") is not None


@pytest.mark.skipif(not git_available, reason="git is not installed")
class TestGitIntegration:
    """Tests that shell out to a real git repository."""

    @pytest.fixture
    def repo(self):
        temp = Path(tempfile.mkdtemp())
        for args in (
            ["init", "-q"],
            ["config", "user.email", "dev@example.com"],
            ["config", "user.name", "Dev"],
            ["config", "commit.gpgsign", "false"],
        ):
            subprocess.run(["git"] + args, cwd=temp, check=True, capture_output=True)

        (temp / "app.py").write_text("".join(f"line {i}\n" for i in range(1, 21)))
        subprocess.run(["git", "add", "."], cwd=temp, check=True, capture_output=True)
        subprocess.run(["git", "commit", "-q", "-m", "init"], cwd=temp, check=True, capture_output=True)
        yield temp
        shutil.rmtree(temp)

    def test_run_git_failure(self, repo):
        """A failing git command raises GitError."""
        with pytest.raises(GitError):
            run_git(["rev-parse", "--verify", "no-such-ref"], repo)

    def test_verify_non_repo(self):
        """A plain directory is not a git repository."""
        temp = Path(tempfile.mkdtemp())
        try:
            with pytest.raises(GitError):
                verify_git_repo(temp)
        finally:
            shutil.rmtree(temp)

    def test_working_tree_diff(self, repo):
        """Unstaged edits show up as a Modified file."""
        content = (repo / "app.py").read_text().replace("line 10\n", "line ten\n")
        (repo / "app.py").write_text(content)

        files = get_diff(DiffOptions(root=repo))

        assert len(files) == 1
        assert files[0].path == "app.py"
        assert files[0].status == FileStatus.MODIFIED
        assert files[0].hunks[0].change_extent() == (10, 10)

    def test_staged_diff(self, repo):
        """--cached only sees staged changes."""
        (repo / "app.py").write_text("replaced\n")
        assert get_diff(DiffOptions(root=repo, staged=True)) == []

        subprocess.run(["git", "add", "app.py"], cwd=repo, check=True, capture_output=True)
        assert len(get_diff(DiffOptions(root=repo, staged=True))) == 1

    def test_untracked_files(self, repo):
        """Untracked files become Added with one synthetic hunk."""
        (repo / "new.py").write_text("a = 1\nb = 2\n")
        (repo / "empty.py").write_text("")

        files = get_diff(DiffOptions(root=repo, untracked=True))

        assert [f.path for f in files] == ["new.py"]
        hunk = files[0].hunks[0]
        assert files[0].status == FileStatus.ADDED
        assert hunk.header == "@@ -0,0 +1,2 @@"
        assert [line.new_lineno for line in hunk.lines] == [1, 2]

    def test_rev_range(self, repo):
        """A revision range diffs between commits."""
        (repo / "app.py").write_text("changed\n")
        subprocess.run(["git", "commit", "-qam", "change"], cwd=repo, check=True, capture_output=True)

        assert get_diff(DiffOptions(root=repo)) == []
        files = get_diff(DiffOptions(root=repo, rev_range="HEAD~1..HEAD"))
        assert [f.path for f in files] == ["app.py"]

    def test_untracked_binary_skipped(self, repo):
        """Untracked files that are not UTF-8 text are left out."""
        (repo / "new.py").write_text("a = 1\n")
        (repo / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\xff\xfe")

        files = get_diff(DiffOptions(root=repo, untracked=True))

        assert [f.path for f in files] == ["new.py"]

    def test_since_resolves_to_range(self, repo):
        """--since diffs from the last commit before that time to HEAD."""
        (repo / "app.py").write_text("changed\n")
        env = dict(os.environ, GIT_AUTHOR_DATE="2099-06-01T00:00:00", GIT_COMMITTER_DATE="2099-06-01T00:00:00")
        subprocess.run(["git", "commit", "-qam", "future"], cwd=repo, check=True, capture_output=True, env=env)

        files = get_diff(DiffOptions(root=repo, since="2099-01-01"))

        assert [f.path for f in files] == ["app.py"]

    def test_since_without_earlier_commits(self, repo):
        """A --since older than every commit is an error."""
        with pytest.raises(GitError) as exc:
            get_diff(DiffOptions(root=repo, since="1971-01-01"))
        assert "no commits found before '1971-01-01'" in str(exc.value)
