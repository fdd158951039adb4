"""Tests for normalized text views."""

from criteria_engine.models import TextMode
from criteria_engine.normalize import NormalizedText, blank_text, normalize_newlines


def test_normalize_newlines():
    assert normalize_newlines("a\r\nb\rc\n") == "a\nb\nc\n"
    assert normalize_newlines("plain") == "plain"


def test_no_comments_view_preserves_offsets():
    text = NormalizedText("x = 1  # TODO: fix\ny = 2\n", language="python")
    view = text.view(TextMode.NO_COMMENTS)
    assert len(view) == len(text.raw)
    assert "TODO" not in view
    assert view.splitlines()[1] == "y = 2"


def test_code_view_blanks_string_bodies():
    text = NormalizedText('query = "SELECT password FROM users"  # password\n', language="python")
    code = text.view(TextMode.CODE)
    assert "password" not in code
    assert code.startswith('query = "')
    assert code.index('"', 9) == text.raw.index('"', 9)


def test_hash_inside_string_is_not_a_comment():
    text = NormalizedText('url = "http://host/#anchor"\n', language="python")
    assert "#anchor" in text.view(TextMode.NO_COMMENTS)


def test_block_comment_spanning_lines():
    source = "a();\n/* secret\n   TODO */\nb();\n"
    view = blank_text(source, "javascript", TextMode.NO_COMMENTS)
    assert view.count("\n") == source.count("\n")
    assert "TODO" not in view
    assert "b();" in view


def test_unterminated_string_blanks_to_end_of_line():
    code = blank_text('x = "abc\ny = 1\n', "python", TextMode.CODE)
    assert code == 'x = "   \ny = 1\n'


def test_triple_quoted_docstring_blanked_in_code_view():
    source = 'def f():\n    """open(path) here"""\n    return 1\n'
    code = blank_text(source, "python", TextMode.CODE)
    assert "open" not in code
    assert code.count("\n") == 3


def test_unknown_language_unchanged():
    assert blank_text("# not a comment here", "cobol", TextMode.NO_COMMENTS) == "# not a comment here"
    assert blank_text("# x", None, TextMode.CODE) == "# x"


def test_yaml_hash_requires_preceding_space():
    view = blank_text("color: '#fff'\nkey: value # note\n", "yaml", TextMode.NO_COMMENTS)
    assert "#fff" in view
    assert "note" not in view


def test_line_and_column_lookup():
    text = NormalizedText("ab\ncde\n\nf")
    assert text.line_count == 4
    assert text.line_number_at_pos(0) == 1
    assert text.line_number_at_pos(3) == 2
    assert text.column_at_pos(5) == 3
    assert text.line_number_at_pos(8) == 4
    assert text.line_start(2) == 3
    assert text.line_end(2) == 6
    assert text.line_end(99) == len(text.raw)
    assert text.line_start(0) == 0


def test_snippet_marks_span():
    text = NormalizedText("one\ntwo\nthree\nfour\nfive\n")
    snippet = text.snippet(2, context_lines=1, end_line=3)
    lines = snippet.splitlines()
    assert lines[0].startswith("   ") and lines[0].endswith("one")
    assert lines[1].startswith(">>>") and lines[1].endswith("two")
    assert lines[2].startswith(">>>") and lines[2].endswith("three")
    assert lines[3].startswith("   ") and lines[3].endswith("four")
