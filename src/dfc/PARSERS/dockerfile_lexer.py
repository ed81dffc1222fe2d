# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Lexer for Dockerfiles.

Converts raw Dockerfile text into a lazy stream of tokens with line/column
tracking. Handles comments, parser directives, line continuations, quoted
strings, JSON arrays and variable references. Variables are recognized but
never resolved here.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from ..errors import LexError, LexErrorKind

DEFAULT_ESCAPE = "\\"

DIRECTIVE_PATTERN = re.compile(r"^#\s*([a-zA-Z][a-zA-Z0-9_-]*)\s*=\s*(.*?)\s*$")
KNOWN_DIRECTIVES = {"syntax", "escape", "check"}

JSON_ESCAPES = set('"\\/bfnrt')
HEX_DIGITS = set("0123456789abcdefABCDEF")
HORIZONTAL_SPACE = " \t\r"


class TokenKind(str, Enum):
    """Kinds of tokens produced by the lexer."""

    COMMENT = "comment"
    INSTRUCTION = "instruction"
    STRING_LITERAL = "string"
    VARIABLE = "variable"
    WHITESPACE = "whitespace"
    LINE_CONTINUATION = "line-continuation"
    NEWLINE = "newline"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    """A single lexical token with its 1-based source position."""

    kind: TokenKind
    text: str
    line: int
    column: int

    def __repr__(self) -> str:
        return f"Token({self.kind.name}, {self.text!r}, {self.line}:{self.column})"


def match_directive(text: str) -> Optional[Tuple[str, str]]:
    """
    Recognize a parser directive comment such as ``# escape=`` or ``# syntax=...``.

    :param text: The full comment text, including the leading ``#``.
    :return: ``(name, value)`` with a lower-cased name, or None.
    """
    match = DIRECTIVE_PATTERN.match(text.strip())
    if not match:
        return None
    name = match.group(1).lower()
    if name not in KNOWN_DIRECTIVES:
        return None
    return name, match.group(2)


class DockerfileLexer:
    """
    Tokenizer for a single Dockerfile source.

    Each call to ``tokens()`` starts a fresh scan, so the lexer itself holds
    no cursor state between passes.
    """

    def __init__(self, source: str):
        self.source = source.replace("\r\n", "\n")

    def tokens(self) -> Iterator[Token]:
        return _Scan(self.source).run()


class TokenStream:
    """
    A lazy, finite and restartable sequence of tokens.

    Iterating twice lexes the source twice; nothing is buffered.
    """

    def __init__(self, source: str):
        self.lexer = DockerfileLexer(source)

    def __iter__(self) -> Iterator[Token]:
        return self.lexer.tokens()


def tokenize(source: str) -> TokenStream:
    """Tokenize Dockerfile text into a restartable token stream."""
    return TokenStream(source)


class _Scan:
    """One lexing pass over the source text."""

    def __init__(self, source: str):
        self.src = source
        self.pos = 0
        self.line = 1
        self.column = 1
        self.escape = DEFAULT_ESCAPE
        self.directives_open = True

    # -- cursor helpers ---------------------------------------------------

    def peek(self, offset: int = 0) -> Optional[str]:
        index = self.pos + offset
        if index < len(self.src):
            return self.src[index]
        return None

    def advance(self) -> str:
        ch = self.src[self.pos]
        self.pos += 1
        if ch == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return ch

    def at_continuation(self) -> bool:
        """True when the cursor sits on an escape char that ends the physical line."""
        if self.peek() != self.escape:
            return False
        offset = 1
        while self.peek(offset) is not None and self.peek(offset) in HORIZONTAL_SPACE:
            offset += 1
        return self.peek(offset) == "\n" or (
            self.peek(offset) is None and offset > 1
        )

    def read_while(self, predicate) -> str:
        start = self.pos
        while self.pos < len(self.src) and predicate(self.src[self.pos]):
            self.advance()
        return self.src[start:self.pos]

    # -- top level ---------------------------------------------------------

    def run(self) -> Iterator[Token]:
        while self.pos < len(self.src):
            line, column = self.line, self.column
            space = self.read_while(lambda c: c in HORIZONTAL_SPACE)
            if space:
                yield Token(TokenKind.WHITESPACE, space, line, column)
            ch = self.peek()
            if ch is None:
                break
            if ch == "\n":
                self.directives_open = False
                line, column = self.line, self.column
                self.advance()
                yield Token(TokenKind.NEWLINE, "\n", line, column)
                continue
            if ch == "#":
                yield self.read_comment()
                if self.peek() == "\n":
                    yield Token(TokenKind.NEWLINE, "\n", self.line, self.column)
                    self.advance()
                continue
            self.directives_open = False
            yield from self.read_instruction()
        yield Token(TokenKind.EOF, "", self.line, self.column)

    def read_comment(self) -> Token:
        line, column = self.line, self.column
        text = self.read_while(lambda c: c != "\n")
        if self.directives_open:
            directive = match_directive(text)
            if directive is None:
                self.directives_open = False
            elif directive[0] == "escape" and directive[1] in ("\\", "`"):
                self.escape = directive[1]
        return Token(TokenKind.COMMENT, text, line, column)

    def read_instruction(self) -> Iterator[Token]:
        line, column = self.line, self.column
        keyword = self.read_while(
            lambda c: c not in HORIZONTAL_SPACE and c != "\n" and not self.at_continuation()
        )
        yield Token(TokenKind.INSTRUCTION, keyword, line, column)
        yield from self.read_arguments()

    # -- arguments ---------------------------------------------------------

    def read_arguments(self) -> Iterator[Token]:
        """Lex the rest of a logical line, following continuations."""
        words: List[str] = []
        word = ""
        while True:
            ch = self.peek()
            if ch is None:
                return
            if ch == "\n":
                yield Token(TokenKind.NEWLINE, "\n", self.line, self.column)
                self.advance()
                return
            line, column = self.line, self.column
            if self.at_continuation():
                yield from self.read_continuation()
                continue
            if ch in HORIZONTAL_SPACE:
                if word:
                    words.append(word)
                    word = ""
                yield Token(
                    TokenKind.WHITESPACE,
                    self.read_while(lambda c: c in HORIZONTAL_SPACE),
                    line,
                    column,
                )
                continue
            if ch == "[" and not word and self.json_allowed(words):
                for token in self.read_json_array():
                    if token.kind == TokenKind.STRING_LITERAL:
                        word += token.text
                    yield token
                continue
            if ch in "\"'":
                token = self.read_quoted(ch)
            elif ch == "$" and self.starts_variable():
                token = self.read_variable()
            else:
                token = self.read_literal()
            word += token.text
            yield token

    def read_continuation(self) -> Iterator[Token]:
        line, column = self.line, self.column
        start = self.pos
        self.advance()
        self.read_while(lambda c: c in HORIZONTAL_SPACE)
        if self.peek() == "\n":
            self.advance()
        yield Token(TokenKind.LINE_CONTINUATION, self.src[start:self.pos], line, column)
        # Comment and blank lines inside a continued instruction are dropped.
        while self.pos < len(self.src):
            mark = (self.pos, self.line, self.column)
            self.read_while(lambda c: c in HORIZONTAL_SPACE)
            if self.peek() == "#":
                yield self.read_comment()
                if self.peek() == "\n":
                    self.advance()
                continue
            if self.peek() == "\n":
                self.advance()
                continue
            self.pos, self.line, self.column = mark
            return

    def json_allowed(self, words: List[str]) -> bool:
        """JSON arrays may follow only flags and sub-keywords (``HEALTHCHECK CMD``)."""
        for word in words:
            if word.startswith("--"):
                continue
            if word.isalpha() and word.isupper():
                continue
            return False
        return True

    def starts_variable(self) -> bool:
        nxt = self.peek(1)
        return nxt is not None and (nxt == "{" or nxt == "_" or nxt.isalpha())

    def read_literal(self) -> Token:
        line, column = self.line, self.column
        start = self.pos
        while self.pos < len(self.src):
            ch = self.src[self.pos]
            if ch in HORIZONTAL_SPACE or ch == "\n" or ch in "\"'":
                break
            if ch == "$" and self.starts_variable():
                break
            if ch == self.escape:
                if self.at_continuation():
                    break
                self.advance()
                if self.pos < len(self.src) and self.src[self.pos] != "\n":
                    self.advance()
                continue
            self.advance()
        return Token(TokenKind.STRING_LITERAL, self.src[start:self.pos], line, column)

    def read_variable(self) -> Token:
        line, column = self.line, self.column
        start = self.pos
        self.advance()
        if self.peek() == "{":
            depth = 0
            while self.pos < len(self.src):
                ch = self.src[self.pos]
                if ch == "\n":
                    break
                self.advance()
                if ch == "{":
                    depth += 1
                elif ch == "}":
                    depth -= 1
                    if depth == 0:
                        return Token(TokenKind.VARIABLE, self.src[start:self.pos], line, column)
            raise LexError(
                "unterminated variable reference, missing '}'",
                LexErrorKind.UNTERMINATED_VARIABLE,
                line,
                column,
            )
        self.read_while(lambda c: c == "_" or c.isalnum())
        return Token(TokenKind.VARIABLE, self.src[start:self.pos], line, column)

    def read_quoted(self, quote: str) -> Token:
        line, column = self.line, self.column
        chars = [self.advance()]
        while True:
            ch = self.peek()
            if ch is None or ch == "\n":
                raise LexError(
                    f"unterminated {quote} quoted string",
                    LexErrorKind.UNTERMINATED_STRING,
                    line,
                    column,
                )
            if ch == self.escape and self.at_continuation():
                # Continuation inside quotes keeps the newline literally.
                self.advance()
                self.read_while(lambda c: c in HORIZONTAL_SPACE)
                if self.peek() == "\n":
                    chars.append(self.advance())
                continue
            chars.append(self.advance())
            if ch == quote:
                return Token(TokenKind.STRING_LITERAL, "".join(chars), line, column)
            if ch == self.escape and quote == '"' and self.peek() not in (None, "\n"):
                chars.append(self.advance())

    def read_json_array(self) -> Iterator[Token]:
        """
        Scan a bracketed JSON array as string-literal pieces.

        Escapes inside JSON strings are checked here; whether the array as a
        whole parses is left to the parser and validator.
        """
        line, column = self.line, self.column
        chars: List[str] = []
        depth = 0
        while self.pos < len(self.src):
            ch = self.src[self.pos]
            if ch == "\n":
                break
            if self.at_continuation():
                if chars:
                    yield Token(TokenKind.STRING_LITERAL, "".join(chars), line, column)
                yield from self.read_continuation()
                line, column, chars = self.line, self.column, []
                continue
            if ch == '"':
                self.read_json_string(chars)
                continue
            chars.append(self.advance())
            if ch == "[":
                depth += 1
            elif ch == "]":
                depth -= 1
                if depth == 0:
                    break
        if chars:
            yield Token(TokenKind.STRING_LITERAL, "".join(chars), line, column)

    def read_json_string(self, chars: List[str]) -> None:
        line, column = self.line, self.column
        chars.append(self.advance())
        while True:
            ch = self.peek()
            if ch is None or ch == "\n":
                raise LexError(
                    "unterminated string in JSON array",
                    LexErrorKind.UNTERMINATED_STRING,
                    line,
                    column,
                )
            if self.at_continuation():
                # Continuation inside quotes keeps the newline literally.
                self.advance()
                self.read_while(lambda c: c in HORIZONTAL_SPACE)
                if self.peek() == "\n":
                    chars.append(self.advance())
                continue
            chars.append(self.advance())
            if ch == '"':
                return
            if ch != "\\":
                continue
            esc_line, esc_column = self.line, self.column - 1
            nxt = self.peek()
            if nxt == "u":
                chars.append(self.advance())
                digits = [self.peek(i) for i in range(4)]
                if not all(d is not None and d in HEX_DIGITS for d in digits):
                    raise LexError(
                        "invalid \\u escape in JSON array, expected 4 hex digits",
                        LexErrorKind.INVALID_ESCAPE,
                        esc_line,
                        esc_column,
                    )
                for _ in range(4):
                    chars.append(self.advance())
                continue
            if nxt is None or nxt not in JSON_ESCAPES:
                raise LexError(
                    f"invalid escape sequence '\\{nxt or ''}' in JSON array",
                    LexErrorKind.INVALID_ESCAPE,
                    esc_line,
                    esc_column,
                )
            chars.append(self.advance())
