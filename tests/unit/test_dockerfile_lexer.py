import pytest

from dfc.errors import LexError, LexErrorKind
from dfc.PARSERS.dockerfile_lexer import TokenKind, match_directive, tokenize


def kinds_and_texts(source):
    return [(t.kind, t.text) for t in tokenize(source)]


def significant(source):
    return [
        (t.kind, t.text)
        for t in tokenize(source)
        if t.kind not in (TokenKind.WHITESPACE, TokenKind.NEWLINE, TokenKind.EOF)
    ]


def test_simple_instruction_positions():
    tokens = list(tokenize("FROM alpine:3.19\n"))
    assert tokens[0].kind == TokenKind.INSTRUCTION
    assert tokens[0].text == "FROM"
    assert (tokens[0].line, tokens[0].column) == (1, 1)
    literal = next(t for t in tokens if t.kind == TokenKind.STRING_LITERAL)
    assert literal.text == "alpine:3.19"
    assert (literal.line, literal.column) == (1, 6)
    assert tokens[-1].kind == TokenKind.EOF


def test_stream_is_restartable():
    stream = tokenize("FROM scratch\nRUN echo hi\n")
    assert list(stream) == list(stream)


def test_variables_are_separate_tokens():
    assert significant("ENV A=$B${C:-x}") == [
        (TokenKind.INSTRUCTION, "ENV"),
        (TokenKind.STRING_LITERAL, "A="),
        (TokenKind.VARIABLE, "$B"),
        (TokenKind.VARIABLE, "${C:-x}"),
    ]


def test_quoted_string_keeps_quotes():
    tokens = significant('LABEL a="x y"')
    assert (TokenKind.STRING_LITERAL, '"x y"') in tokens


def test_comment_and_directive():
    tokens = list(tokenize("# syntax=docker/dockerfile:1\n# just a note\nFROM alpine\n"))
    comments = [t for t in tokens if t.kind == TokenKind.COMMENT]
    assert [c.text for c in comments] == ["# syntax=docker/dockerfile:1", "# just a note"]
    assert comments[1].line == 2


def test_match_directive():
    assert match_directive("# escape=`") == ("escape", "`")
    assert match_directive("#SYNTAX = docker/dockerfile:1") == ("syntax", "docker/dockerfile:1")
    assert match_directive("# not a directive") is None
    assert match_directive("# unknown=value") is None


def test_line_continuation_token():
    tokens = kinds_and_texts("RUN echo a \\\n    b\n")
    assert (TokenKind.LINE_CONTINUATION, "\\\n") in tokens
    instructions = [t for t in tokens if t[0] == TokenKind.INSTRUCTION]
    assert len(instructions) == 1


def test_escape_directive_switches_continuation_character():
    source = "# escape=`\nFROM mcr.microsoft.com/windows\nRUN dir c:\\ `\n    /s\n"
    tokens = list(tokenize(source))
    continuations = [t for t in tokens if t.kind == TokenKind.LINE_CONTINUATION]
    assert len(continuations) == 1
    assert continuations[0].text.startswith("`")
    literals = [t.text for t in tokens if t.kind == TokenKind.STRING_LITERAL]
    assert "c:\\" in literals


def test_comment_lines_inside_continuation_are_not_instructions():
    source = "RUN apt-get update \\\n# install tools\n    && apt-get install -y curl\n"
    tokens = list(tokenize(source))
    assert [t.text for t in tokens if t.kind == TokenKind.INSTRUCTION] == ["RUN"]
    assert any(t.kind == TokenKind.COMMENT and t.text == "# install tools" for t in tokens)


def test_json_array_is_string_literal():
    tokens = significant('CMD ["echo", "hi"]')
    assert tokens == [
        (TokenKind.INSTRUCTION, "CMD"),
        (TokenKind.STRING_LITERAL, '["echo", "hi"]'),
    ]


def test_unterminated_string():
    with pytest.raises(LexError) as exc_info:
        list(tokenize('RUN echo "abc\n'))
    assert exc_info.value.kind == LexErrorKind.UNTERMINATED_STRING
    assert exc_info.value.line == 1
    assert exc_info.value.column == 10


def test_unterminated_variable():
    with pytest.raises(LexError) as exc_info:
        list(tokenize("RUN echo ${FOO\n"))
    assert exc_info.value.kind == LexErrorKind.UNTERMINATED_VARIABLE


def test_invalid_json_escape():
    with pytest.raises(LexError) as exc_info:
        list(tokenize('CMD ["a\\qb"]\n'))
    assert exc_info.value.kind == LexErrorKind.INVALID_ESCAPE
    assert exc_info.value.line == 1


def test_invalid_unicode_escape():
    with pytest.raises(LexError) as exc_info:
        list(tokenize('CMD ["\\u12"]\n'))
    assert exc_info.value.kind == LexErrorKind.INVALID_ESCAPE


def test_valid_json_escapes():
    tokens = significant('CMD ["a\\"b", "\\u00e9", "\\\\"]')
    assert tokens[1][0] == TokenKind.STRING_LITERAL


def test_crlf_line_endings():
    tokens = list(tokenize("FROM alpine\r\nRUN true\r\n"))
    assert [t.text for t in tokens if t.kind == TokenKind.INSTRUCTION] == ["FROM", "RUN"]
    run = next(t for t in tokens if t.text == "RUN")
    assert run.line == 2


def test_continuation_inside_quotes_keeps_newline():
    tokens = significant('RUN echo "x \\\ny"\n')
    assert (TokenKind.STRING_LITERAL, '"x \ny"') in tokens
    assert not any(kind == TokenKind.LINE_CONTINUATION for kind, _ in kinds_and_texts('RUN echo "x \\\ny"\n'))


def test_continuation_inside_json_string_keeps_newline():
    tokens = significant('CMD ["a \\\nb"]\n')
    assert tokens == [
        (TokenKind.INSTRUCTION, "CMD"),
        (TokenKind.STRING_LITERAL, '["a \nb"]'),
    ]
