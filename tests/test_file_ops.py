"""Tests for the confined file operations."""

import shutil

import pytest

from nyocoder.tools.file_ops import FileOperationError, FileOps, format_file_size


@pytest.fixture
def ops(tmp_path):
    return FileOps(str(tmp_path), max_read_lines=3, max_output=2000)


class TestReadFile:
    def test_window_and_truncation(self, ops, tmp_path):
        (tmp_path / "f.txt").write_text("l0\nl1\nl2\nl3\nl4\n", encoding="utf-8")

        out = ops.read_file("f.txt")

        assert out == "File has 5 lines, reading lines 0-2\n---\nl0\nl1\nl2\n...[truncated]"

    def test_offset(self, ops, tmp_path):
        (tmp_path / "f.txt").write_text("l0\nl1\nl2\nl3\nl4\n", encoding="utf-8")
        assert ops.read_file("f.txt", 3) == "File has 5 lines, reading lines 3-4\n---\nl3\nl4"

    def test_offset_past_end(self, ops, tmp_path):
        (tmp_path / "f.txt").write_text("only\n", encoding="utf-8")
        with pytest.raises(FileOperationError, match="Line offset 1 exceeds file length"):
            ops.read_file("f.txt", 1)

    def test_negative_offset_clamped(self, ops, tmp_path):
        (tmp_path / "f.txt").write_text("a\n", encoding="utf-8")
        assert ops.read_file("f.txt", -4).endswith("---\na")

    def test_missing(self, ops):
        with pytest.raises(FileOperationError, match="File not found"):
            ops.read_file("nope.txt")

    def test_outside_root(self, ops):
        with pytest.raises(FileOperationError, match="Access denied"):
            ops.read_file("../outside.txt")

    def test_home_expansion_is_confined(self, ops):
        with pytest.raises(FileOperationError, match="Access denied"):
            ops.read_file("~/.bashrc")


class TestWriteMoveCopyDelete:
    def test_write_creates_parents(self, ops, tmp_path):
        assert ops.write_file("a/b/c.txt", "x") == "File written successfully: a/b/c.txt"
        assert (tmp_path / "a" / "b" / "c.txt").read_text(encoding="utf-8") == "x"

    def test_move_refuses_existing_destination(self, ops, tmp_path):
        (tmp_path / "a.txt").write_text("1", encoding="utf-8")
        (tmp_path / "b.txt").write_text("2", encoding="utf-8")
        with pytest.raises(FileOperationError, match="Destination file already exists"):
            ops.move_file("a.txt", "b.txt")

    def test_copy_missing_source(self, ops):
        with pytest.raises(FileOperationError, match="Source file not found"):
            ops.copy_file("ghost.txt", "b.txt")

    def test_move_message(self, ops, tmp_path):
        (tmp_path / "a.txt").write_text("1", encoding="utf-8")
        assert ops.move_file("a.txt", "b.txt") == "File moved successfully from 'a.txt' to 'b.txt'"
        assert not (tmp_path / "a.txt").exists()

    def test_delete(self, ops, tmp_path):
        (tmp_path / "d.txt").write_text("1", encoding="utf-8")
        assert ops.delete_file("d.txt") == "File deleted successfully: d.txt"
        assert not (tmp_path / "d.txt").exists()

    def test_delete_directory_refused(self, ops, tmp_path):
        (tmp_path / "dir").mkdir()
        with pytest.raises(FileOperationError, match="File not found"):
            ops.delete_file("dir")


class TestListDirectory:
    def test_listing(self, ops, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "b.txt").write_bytes(b"x" * 1536)
        (tmp_path / "a.txt").write_bytes(b"")

        out = ops.list_directory(".")

        assert out == (
            "Contents of: .\n\n"
            "Directories:\n  [DIR]  src\n\n"
            "Files:\n  [FILE] a.txt (0 B)\n  [FILE] b.txt (1.5 KB)\n"
        )

    def test_empty(self, ops, tmp_path):
        (tmp_path / "empty").mkdir()
        assert "Directory is empty." in ops.list_directory("empty")

    def test_not_a_directory(self, ops):
        with pytest.raises(FileOperationError, match="Directory not found"):
            ops.list_directory("missing")


@pytest.mark.parametrize("size,text", [
    (0, "0 B"),
    (1023, "1023 B"),
    (1024, "1 KB"),
    (1536, "1.5 KB"),
    (5 * 1024 * 1024, "5 MB"),
])
def test_format_file_size(size, text):
    assert format_file_size(size) == text


@pytest.mark.skipif(shutil.which("grep") is None, reason="grep not installed")
class TestGrepSearch:
    def test_match(self, ops, tmp_path):
        (tmp_path / "app.py").write_text("def main():\n    pass\n", encoding="utf-8")
        out, code = ops.grep_search("def main")
        assert code == 0
        assert "app.py:def main():" in out

    def test_no_match(self, ops, tmp_path):
        (tmp_path / "app.py").write_text("x\n", encoding="utf-8")
        assert ops.grep_search("zzz") == ("No matches found for pattern: zzz", 0)

    def test_case_insensitive_and_file_pattern(self, ops, tmp_path):
        (tmp_path / "a.py").write_text("Hello\n", encoding="utf-8")
        (tmp_path / "a.txt").write_text("hello\n", encoding="utf-8")

        out, _ = ops.grep_search("hello", file_pattern="*.py", case_insensitive=True)

        assert "a.py" in out
        assert "a.txt" not in out

    def test_excluded_dirs(self, ops, tmp_path):
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "lib.js").write_text("needle\n", encoding="utf-8")
        assert ops.grep_search("needle")[0].startswith("No matches found")

    def test_missing_directory(self, ops):
        with pytest.raises(FileOperationError, match="Directory not found"):
            ops.grep_search("x", directory="nowhere")

    def test_command_flags(self, ops, tmp_path):
        cmd = ops.grep_command("p", tmp_path, "*.cs", True)
        assert cmd[:4] == ["grep", "-r", "-i", "-E"]
        assert "--include=*.cs" in cmd
        assert "--exclude-dir=.git" in cmd
        assert cmd[-3:] == ["-e", "p", str(tmp_path)]
