"""Tests for editor context rendering."""

from nyocoder.context import EditorContext, with_context


def test_empty_context_renders_nothing():
    assert EditorContext().build_prompt_context() == ""
    assert with_context("hi", EditorContext()) == "hi"
    assert with_context("hi", None) == "hi"


def test_full_context():
    text = "\n".join(f"line {i}" for i in range(1, 21))
    ctx = EditorContext(
        open_files=["/p/a.py", "/p/b.py"],
        active_file="/p/b.py",
        cursor_line=10,
        cursor_column=4,
        active_text=text,
        selected_text="line 10",
    )

    out = ctx.build_prompt_context()

    assert out.startswith("---Context---\nOpen files in editor:\n  - /p/a.py\n  - /p/b.py *\n\n")
    assert "Active file: /p/b.py\nCursor position: Line 10, Column 4\n" in out
    assert "Surrounding code:\n```\n  line 5\n" in out
    assert "> line 10\n" in out
    assert "  line 15\n```" in out
    assert "line 16" not in out.split("Selected text")[0]
    assert out.endswith("Selected text:\n```\nline 10\n```\n---End Context---")


def test_surrounding_code_clamped_at_file_start():
    ctx = EditorContext(active_file="a", cursor_line=1, active_text="first\nsecond\n")
    assert ctx.surrounding_code() == "> first\n  second"


def test_from_paths_reads_active_file(tmp_path):
    a = tmp_path / "a.py"
    b = tmp_path / "b.py"
    a.write_text("a\n", encoding="utf-8")
    b.write_text("one\ntwo\n", encoding="utf-8")

    ctx = EditorContext.from_paths([str(a), str(b)], cursor_line=2)

    assert ctx.active_file == str(b.resolve())
    assert ctx.active_text == "one\ntwo\n"
    assert ctx.cursor_column == 1
    assert "> two" in ctx.build_prompt_context()


def test_with_context_separator():
    ctx = EditorContext(open_files=["/x.py"])
    message = with_context("fix it", ctx)
    assert message == "---Context---\nOpen files in editor:\n  - /x.py\n---End Context---\n\n---\n\nfix it"
