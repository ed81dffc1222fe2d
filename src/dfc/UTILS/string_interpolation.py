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
Utilities for variable interpolation in Dockerfile arguments.
"""
from typing import Callable, List, Optional, Tuple

Lookup = Callable[[str], Optional[str]]

MODIFIERS = (":-", ":+", ":?", "-", "+", "?")


class MissingVariableError(KeyError):
    """Raised by ``${VAR:?message}`` when VAR has no value."""

    def __init__(self, name: str, message: str = ""):
        self.name = name
        self.message = message or f"{name}: parameter not set"
        super().__init__(self.message)


def _is_name_start(ch: str) -> bool:
    return ch == "_" or ch.isalpha()


def _is_name_char(ch: str) -> bool:
    return ch == "_" or ch.isalnum()


class EnvironmentInterpolator:
    """
    Interpolates ``$VAR`` and ``${VAR}`` references in Dockerfile text.

    Supports ``${VAR:-default}``, ``${VAR-default}``, ``${VAR:+value}``,
    ``${VAR+value}``, ``${VAR:?message}`` and ``${VAR?message}``. Nothing
    inside single quotes is expanded, and an escaped ``$`` stays literal.
    """

    def __init__(
        self,
        lookup: Lookup,
        on_missing: Optional[Callable[[str], None]] = None,
        escape: str = "\\",
        strict: bool = True,
    ):
        """
        :param lookup: Returns the value for a name, or None when unset.
        :param on_missing: Called with the name of each unset plain reference.
        :param escape: The Dockerfile escape character.
        :param strict: When False, ``${VAR:?}`` does not raise.
        """
        self.lookup = lookup
        self.on_missing = on_missing
        self.escape = escape
        self.strict = strict

    def expand_text(self, text: str) -> str:
        """
        Substitute variables in shell-form text, keeping quotes and escapes.

        The shell that eventually runs the command still sees its own quoting.
        """
        out: List[str] = []
        i = 0
        quote = None
        while i < len(text):
            ch = text[i]
            if quote == "'":
                out.append(ch)
                if ch == "'":
                    quote = None
                i += 1
                continue
            if ch == self.escape and i + 1 < len(text):
                out.append(text[i:i + 2])
                i += 2
                continue
            if ch in "\"'":
                if quote is None:
                    quote = ch
                elif quote == ch:
                    quote = None
                out.append(ch)
                i += 1
                continue
            if ch == "$":
                value, i = self._reference(text, i)
                out.append(value)
                continue
            out.append(ch)
            i += 1
        return "".join(out)

    def expand_word(self, word: str) -> str:
        """Substitute variables in a single word and remove its quoting."""
        return self._process_word(word, substitute=True)

    def unquote(self, word: str) -> str:
        """Remove quoting from a word without substituting anything."""
        return self._process_word(word, substitute=False)

    def _process_word(self, word: str, substitute: bool) -> str:
        out: List[str] = []
        i = 0
        quote = None
        while i < len(word):
            ch = word[i]
            if quote == "'":
                if ch == "'":
                    quote = None
                else:
                    out.append(ch)
                i += 1
                continue
            if ch == self.escape and i + 1 < len(word):
                nxt = word[i + 1]
                if quote == '"' and nxt not in ('"', "$", self.escape):
                    out.append(ch)
                out.append(nxt)
                i += 2
                continue
            if quote is None and ch in "\"'":
                quote = ch
                i += 1
                continue
            if quote == '"' and ch == '"':
                quote = None
                i += 1
                continue
            if ch == "$" and substitute:
                value, i = self._reference(word, i)
                out.append(value)
                continue
            out.append(ch)
            i += 1
        return "".join(out)

    def _reference(self, text: str, i: int) -> Tuple[str, int]:
        """Expand the reference starting at ``text[i] == '$'``."""
        if i + 1 >= len(text):
            return "$", i + 1
        nxt = text[i + 1]
        if _is_name_start(nxt):
            end = i + 1
            while end < len(text) and _is_name_char(text[end]):
                end += 1
            return self._resolve(text[i + 1:end], None, ""), end
        if nxt != "{":
            return "$", i + 1
        close = self._matching_brace(text, i + 1)
        if close is None:
            return text[i:], len(text)
        body = text[i + 2:close]
        end = 0
        while end < len(body) and _is_name_char(body[end]):
            end += 1
        name, rest = body[:end], body[end:]
        if not rest:
            return self._resolve(name, None, ""), close + 1
        for modifier in MODIFIERS:
            if rest.startswith(modifier):
                return self._resolve(name, modifier, rest[len(modifier):]), close + 1
        # Unsupported expansion such as ${VAR/x/y}; leave it for the shell.
        return text[i:close + 1], close + 1

    @staticmethod
    def _matching_brace(text: str, start: int) -> Optional[int]:
        depth = 0
        for index in range(start, len(text)):
            if text[index] == "{":
                depth += 1
            elif text[index] == "}":
                depth -= 1
                if depth == 0:
                    return index
        return None

    def _resolve(self, name: str, modifier: Optional[str], word: str) -> str:
        value = self.lookup(name)
        if modifier is None:
            if value is None:
                if self.on_missing:
                    self.on_missing(name)
                return ""
            return value
        is_set = value is not None
        is_nonempty = bool(value)
        if modifier in (":-", "-"):
            use_default = not is_nonempty if modifier == ":-" else not is_set
            return self.expand_word(word) if use_default else value
        if modifier in (":+", "+"):
            use_alt = is_nonempty if modifier == ":+" else is_set
            return self.expand_word(word) if use_alt else ""
        failed = not is_nonempty if modifier == ":?" else not is_set
        if failed:
            if self.strict:
                raise MissingVariableError(name, self.unquote(word))
            return ""
        return value


def variable_references(text: str, escape: str = "\\") -> List[str]:
    """
    List the variable names referenced in a piece of Dockerfile text, in order.

    Names inside single quotes or behind an escaped ``$`` are not references.
    """
    names: List[str] = []

    def record(name: str) -> Optional[str]:
        names.append(name)
        return None

    EnvironmentInterpolator(record, escape=escape, strict=False).expand_text(text)
    return names


def unquote(word: str, escape: str = "\\") -> str:
    """Remove shell quoting from a word without substituting variables."""
    return EnvironmentInterpolator(lambda name: None, escape=escape).unquote(word)
