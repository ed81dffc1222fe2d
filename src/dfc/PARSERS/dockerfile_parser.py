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
Parsers for Dockerfiles, turning a token stream into a typed AST.

The parser is LL(1) per instruction: the keyword token alone selects the
production. It records argument text as written; variables are not evaluated
and stage references are not resolved here.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import ParseError, ParseErrorKind
from ..MODELS.dockerfile_ast import (
    AddInstruction,
    ArgInstruction,
    ArgumentForm,
    BuildArgDeclaration,
    CmdInstruction,
    CommandLine,
    CopyInstruction,
    Directive,
    DockerfileAST,
    EntrypointInstruction,
    EnvInstruction,
    ExposeInstruction,
    FromInstruction,
    HealthcheckInstruction,
    HealthcheckMode,
    InstructionBase,
    KeyValue,
    LabelInstruction,
    MaintainerInstruction,
    Mount,
    OnbuildInstruction,
    RunInstruction,
    ShellInstruction,
    SourceLocation,
    Stage,
    StopSignalInstruction,
    UserInstruction,
    VolumeInstruction,
    WorkdirInstruction,
    check_dispatch_table,
)
from ..UTILS.string_interpolation import unquote
from .dockerfile_lexer import DEFAULT_ESCAPE, Token, TokenKind, match_directive, tokenize

logger = logging.getLogger(__name__)

VALUE = "value"
SWITCH = "switch"


class TokenCursor:
    """One-token lookahead over a lazy token stream."""

    def __init__(self, tokens: Iterable[Token]):
        self._tokens = iter(tokens)
        self._current: Optional[Token] = None
        self._last: Optional[Token] = None
        self._fill()

    def _fill(self) -> None:
        self._current = next(self._tokens, None)
        if self._current is None:
            line = self._last.line if self._last else 1
            column = self._last.column + len(self._last.text) if self._last else 1
            self._current = Token(TokenKind.EOF, "", line, column)

    def peek(self) -> Token:
        return self._current

    def advance(self) -> Token:
        token = self._current
        if token.kind != TokenKind.EOF:
            self._last = token
            self._fill()
        return token

    @property
    def at_end(self) -> bool:
        return self._current.kind == TokenKind.EOF


@dataclass
class Word:
    """Adjacent string and variable tokens not separated by whitespace."""

    text: str
    line: int
    column: int
    offset: int


@dataclass
class LogicalLine:
    """
    An instruction keyword with its argument words.

    ``raw`` is the argument text as written with continuations removed;
    each word records its offset into it.
    """

    keyword: str
    line: int
    column: int
    words: List[Word] = field(default_factory=list)
    raw: str = ""

    @property
    def location(self) -> SourceLocation:
        return SourceLocation(line=self.line, column=self.column)

    def rest(self, index: int) -> str:
        """Argument text from word ``index`` to the end of the line."""
        if index >= len(self.words):
            return ""
        return self.raw[self.words[index].offset:].strip()

    def texts(self, start: int = 0) -> List[str]:
        return [word.text for word in self.words[start:]]

    def nested(self) -> "LogicalLine":
        """The line that follows the keyword, read as its own instruction."""
        head = self.words[0]
        return LogicalLine(
            keyword=head.text,
            line=head.line,
            column=head.column,
            words=self.words[1:],
            raw=self.raw,
        )


def looks_like_json(text: str) -> bool:
    """Whether bracketed text was meant as a JSON array."""
    if not (text.startswith("[") and text.endswith("]")):
        return False
    inner = text[1:-1].strip()
    return not inner or inner[0] in "\"'" or "," in inner


def split_outside_braces(text: str, separator: str) -> Tuple[str, Optional[str]]:
    """Split on the first separator that is not inside ``${...}``."""
    depth = 0
    for index, ch in enumerate(text):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == separator and depth == 0:
            return text[:index], text[index + 1:]
    return text, None


class DockerfileParser:
    """
    Parser for Dockerfile instructions.
    """

    def __init__(self):
        self.escape = DEFAULT_ESCAPE
        self._productions: Dict[str, Callable[[LogicalLine], InstructionBase]] = {
            "FROM": self._parse_from,
            "RUN": self._parse_run,
            "COPY": self._parse_copy,
            "ADD": self._parse_add,
            "ENV": self._parse_env,
            "ARG": self._parse_arg,
            "WORKDIR": self._parse_workdir,
            "USER": self._parse_user,
            "EXPOSE": self._parse_expose,
            "VOLUME": self._parse_volume,
            "LABEL": self._parse_label,
            "HEALTHCHECK": self._parse_healthcheck,
            "ENTRYPOINT": self._parse_entrypoint,
            "CMD": self._parse_cmd,
            "SHELL": self._parse_shell,
            "ONBUILD": self._parse_onbuild,
            "STOPSIGNAL": self._parse_stopsignal,
            "MAINTAINER": self._parse_maintainer,
        }
        check_dispatch_table(self._productions, "DockerfileParser")

    def parse(self, dockerfile_path: str) -> DockerfileAST:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            DockerfileAST: The parsed syntax tree.
        """
        with open(dockerfile_path, "r", encoding="utf-8") as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> DockerfileAST:
        """
        Parses a Dockerfile from a string content.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            DockerfileAST: The parsed syntax tree.
        """
        return self.parse_tokens(tokenize(content))

    def parse_tokens(self, tokens: Iterable[Token]) -> DockerfileAST:
        """
        Parses a token stream produced by ``tokenize``.

        :param tokens: Tokens in source order, ending with EOF.
        :return: The parsed syntax tree.
        :raises ParseError: On the first malformed instruction.
        """
        cursor = TokenCursor(tokens)
        self.escape = DEFAULT_ESCAPE
        directives: List[Directive] = []
        preamble: List[InstructionBase] = []
        stages: List[dict] = []
        directives_open = True
        previous = None

        while not cursor.at_end:
            token = cursor.peek()
            if token.kind == TokenKind.WHITESPACE:
                cursor.advance()
                continue
            if token.kind == TokenKind.NEWLINE:
                if previous != TokenKind.COMMENT:
                    directives_open = False
                previous = cursor.advance().kind
                continue
            if token.kind == TokenKind.COMMENT:
                cursor.advance()
                previous = token.kind
                directive = match_directive(token.text) if directives_open else None
                if directive is None:
                    directives_open = False
                    continue
                name, value = directive
                directives.append(Directive(
                    name=name,
                    value=value,
                    location=SourceLocation(line=token.line, column=token.column),
                ))
                if name == "escape" and value in ("\\", "`"):
                    self.escape = value
                continue
            if token.kind != TokenKind.INSTRUCTION:
                raise ParseError(
                    f"unexpected {token.kind.value} token {token.text!r}",
                    ParseErrorKind.UNEXPECTED_TOKEN,
                    token.line,
                    token.column,
                )
            directives_open = False
            line = self._read_line(cursor)
            previous = TokenKind.NEWLINE
            instruction = self._parse_instruction(line)
            if isinstance(instruction, FromInstruction):
                stages.append({"from": instruction, "instructions": []})
            elif stages:
                stages[-1]["instructions"].append(instruction)
            else:
                preamble.append(instruction)

        ast = DockerfileAST(
            directives=tuple(directives),
            preamble=tuple(preamble),
            stages=tuple(
                Stage(
                    index=index,
                    name=entry["from"].alias,
                    base_image=entry["from"].image,
                    platform=entry["from"].platform,
                    from_instruction=entry["from"],
                    instructions=tuple(entry["instructions"]),
                )
                for index, entry in enumerate(stages)
            ),
            escape_char=self.escape,
        )
        logger.debug(
            "Parsed %d stage(s), %d preamble instruction(s)",
            len(ast.stages), len(ast.preamble),
        )
        return ast

    # -- logical lines -------------------------------------------------------

    def _read_line(self, cursor: TokenCursor) -> LogicalLine:
        keyword = cursor.advance()
        line = LogicalLine(keyword=keyword.text, line=keyword.line, column=keyword.column)
        pieces: List[str] = []
        size = 0
        current: Optional[Word] = None
        while not cursor.at_end:
            token = cursor.advance()
            if token.kind == TokenKind.NEWLINE:
                break
            if token.kind in (TokenKind.LINE_CONTINUATION, TokenKind.COMMENT):
                continue
            if token.kind == TokenKind.WHITESPACE:
                current = None
            elif token.kind in (TokenKind.STRING_LITERAL, TokenKind.VARIABLE):
                if current is None:
                    current = Word(token.text, token.line, token.column, size)
                    line.words.append(current)
                else:
                    current.text += token.text
            else:
                raise ParseError(
                    f"unexpected {token.kind.value} token {token.text!r}",
                    ParseErrorKind.UNEXPECTED_TOKEN,
                    token.line,
                    token.column,
                )
            pieces.append(token.text)
            size += len(token.text)
        line.raw = "".join(pieces)
        return line

    def _parse_instruction(self, line: LogicalLine) -> InstructionBase:
        production = self._productions.get(line.keyword.upper())
        if production is None:
            raise ParseError(
                f"unknown instruction: {line.keyword}",
                ParseErrorKind.UNKNOWN_INSTRUCTION,
                line.line,
                line.column,
            )
        return production(line)

    # -- shared helpers ------------------------------------------------------

    @staticmethod
    def _fail(message: str, kind: ParseErrorKind, line: LogicalLine,
              word: Optional[Word] = None) -> ParseError:
        if word is not None:
            return ParseError(message, kind, word.line, word.column)
        return ParseError(message, kind, line.line, line.column)

    def _require(self, line: LogicalLine, start: int, what: str) -> None:
        if start >= len(line.words):
            raise self._fail(
                f"{line.keyword.upper()} requires {what}",
                ParseErrorKind.MISSING_ARGUMENT,
                line,
            )

    def _take_flags(
        self, line: LogicalLine, allowed: Dict[str, str], start: int = 0
    ) -> Tuple[Dict[str, List[str]], int]:
        """
        Consume leading ``--name[=value]`` words.

        :param allowed: Flag name to ``VALUE`` or ``SWITCH``.
        :return: Values per flag name, and the index of the first other word.
        """
        flags: Dict[str, List[str]] = {}
        index = start
        keyword = line.keyword.upper()
        while index < len(line.words) and line.words[index].text.startswith("--"):
            word = line.words[index]
            name, sep, value = word.text[2:].partition("=")
            name = name.lower()
            if name not in allowed:
                raise self._fail(
                    f"unknown flag --{name} for {keyword}",
                    ParseErrorKind.UNKNOWN_FLAG,
                    line,
                    word,
                )
            if allowed[name] == VALUE:
                if not sep or not value:
                    raise self._fail(
                        f"flag --{name} for {keyword} requires a value",
                        ParseErrorKind.INVALID_ARGUMENT,
                        line,
                        word,
                    )
                flags.setdefault(name, []).append(value)
            else:
                setting = unquote(value, self.escape).lower() if sep else "true"
                if setting not in ("true", "false"):
                    raise self._fail(
                        f"flag --{name} for {keyword} expects true or false",
                        ParseErrorKind.INVALID_ARGUMENT,
                        line,
                        word,
                    )
                flags[name] = [setting]
            index += 1
        return flags, index

    @staticmethod
    def _last(flags: Dict[str, List[str]], name: str) -> Optional[str]:
        values = flags.get(name)
        return values[-1] if values else None

    def _command(self, line: LogicalLine, start: int) -> CommandLine:
        self._require(line, start, "a command")
        text = line.rest(start)
        if not looks_like_json(text):
            return CommandLine(form=ArgumentForm.SHELL, args=(text,), raw=text)
        try:
            decoded = json.loads(text, strict=False)
        except json.JSONDecodeError as exc:
            return CommandLine(
                form=ArgumentForm.SHELL, args=(text,), raw=text, json_error=exc.msg
            )
        if not isinstance(decoded, list) or not all(isinstance(a, str) for a in decoded):
            return CommandLine(
                form=ArgumentForm.SHELL,
                args=(text,),
                raw=text,
                json_error="expected a JSON array of strings",
            )
        return CommandLine(form=ArgumentForm.EXEC, args=tuple(decoded), raw=text)

    def _path_list(self, line: LogicalLine, start: int) -> List[str]:
        """Path arguments in JSON or whitespace-separated form."""
        text = line.rest(start)
        if looks_like_json(text):
            try:
                decoded = json.loads(text, strict=False)
            except json.JSONDecodeError as exc:
                raise self._fail(
                    f"{line.keyword.upper()} has a malformed JSON array: {exc.msg}",
                    ParseErrorKind.INVALID_ARGUMENT,
                    line,
                    line.words[start],
                )
            if not all(isinstance(item, str) for item in decoded):
                raise self._fail(
                    f"{line.keyword.upper()} expects a JSON array of strings",
                    ParseErrorKind.INVALID_ARGUMENT,
                    line,
                    line.words[start],
                )
            return [self._requote(item) for item in decoded]
        return line.texts(start)

    def _requote(self, item: str) -> str:
        """Double-quote a decoded JSON string so it stays one word."""
        escape = self.escape
        body = item.replace(escape, escape + escape).replace('"', escape + '"')
        return f'"{body}"'

    def _key_values(self, line: LogicalLine) -> Tuple[KeyValue, ...]:
        keyword = line.keyword.upper()
        self._require(line, 0, "at least one key=value pair")
        first = line.words[0]
        if "=" not in first.text:
            value = line.rest(1)
            if not value:
                raise self._fail(
                    f"{keyword} {first.text} requires a value",
                    ParseErrorKind.INVALID_ARGUMENT,
                    line,
                    first,
                )
            return (KeyValue(key=unquote(first.text, self.escape), value=value),)
        pairs = []
        for word in line.words:
            key, sep, value = word.text.partition("=")
            if not sep:
                raise self._fail(
                    f"{keyword} expects key=value pairs, got {word.text!r}",
                    ParseErrorKind.INVALID_ARGUMENT,
                    line,
                    word,
                )
            key = unquote(key, self.escape)
            if not key:
                raise self._fail(
                    f"{keyword} names can not be blank",
                    ParseErrorKind.INVALID_ARGUMENT,
                    line,
                    word,
                )
            pairs.append(KeyValue(key=key, value=value))
        return tuple(pairs)

    def _parse_mount(self, spec: str) -> Mount:
        values: Dict[str, Optional[str]] = {
            "type": "bind", "source": None, "target": None, "from_stage": None,
        }
        aliases = {
            "type": "type",
            "source": "source", "src": "source",
            "target": "target", "dst": "target", "destination": "target",
            "from": "from_stage",
        }
        options = []
        for item in unquote(spec, self.escape).split(","):
            item = item.strip()
            if not item:
                continue
            key, sep, value = item.partition("=")
            key = key.strip().lower()
            if key in aliases:
                values[aliases[key]] = value
            else:
                options.append(KeyValue(key=key, value=value if sep else "true"))
        return Mount(options=tuple(options), **values)

    # -- productions -----------------------------------------------------------

    def _parse_from(self, line: LogicalLine) -> FromInstruction:
        flags, index = self._take_flags(line, {"platform": VALUE})
        self._require(line, index, "an image reference")
        words = line.words[index:]
        alias = None
        if len(words) == 3 and words[1].text.upper() == "AS":
            alias = words[2].text
        elif len(words) == 2 and words[1].text.upper() == "AS":
            raise self._fail(
                "FROM ... AS requires a stage name",
                ParseErrorKind.MISSING_ARGUMENT,
                line,
                words[1],
            )
        elif len(words) != 1:
            raise self._fail(
                "FROM expects 'image [AS name]'",
                ParseErrorKind.INVALID_ARGUMENT,
                line,
                words[1],
            )
        return FromInstruction(
            location=line.location,
            image=words[0].text,
            alias=alias,
            platform=self._last(flags, "platform"),
        )

    def _parse_run(self, line: LogicalLine) -> RunInstruction:
        flags, index = self._take_flags(
            line, {"mount": VALUE, "network": VALUE, "security": VALUE}
        )
        return RunInstruction(
            location=line.location,
            command=self._command(line, index),
            mounts=tuple(self._parse_mount(spec) for spec in flags.get("mount", [])),
            network=self._last(flags, "network"),
            security=self._last(flags, "security"),
        )

    def _parse_copy(self, line: LogicalLine) -> CopyInstruction:
        flags, index = self._take_flags(
            line, {"from": VALUE, "chown": VALUE, "chmod": VALUE, "link": SWITCH}
        )
        paths = self._paths(line, index)
        return CopyInstruction(
            location=line.location,
            sources=tuple(paths[:-1]),
            destination=paths[-1],
            from_stage=self._last(flags, "from"),
            chown=self._last(flags, "chown"),
            chmod=self._last(flags, "chmod"),
            link=self._last(flags, "link") == "true",
        )

    def _parse_add(self, line: LogicalLine) -> AddInstruction:
        flags, index = self._take_flags(
            line,
            {"chown": VALUE, "chmod": VALUE, "checksum": VALUE, "link": SWITCH},
        )
        paths = self._paths(line, index)
        return AddInstruction(
            location=line.location,
            sources=tuple(paths[:-1]),
            destination=paths[-1],
            chown=self._last(flags, "chown"),
            chmod=self._last(flags, "chmod"),
            checksum=self._last(flags, "checksum"),
            link=self._last(flags, "link") == "true",
        )

    def _paths(self, line: LogicalLine, index: int) -> List[str]:
        self._require(line, index, "a source and a destination")
        paths = self._path_list(line, index)
        if len(paths) < 2:
            raise self._fail(
                f"{line.keyword.upper()} requires at least one source and a destination",
                ParseErrorKind.MISSING_ARGUMENT,
                line,
            )
        return paths

    def _parse_env(self, line: LogicalLine) -> EnvInstruction:
        return EnvInstruction(location=line.location, variables=self._key_values(line))

    def _parse_label(self, line: LogicalLine) -> LabelInstruction:
        return LabelInstruction(location=line.location, labels=self._key_values(line))

    def _parse_arg(self, line: LogicalLine) -> ArgInstruction:
        self._require(line, 0, "a name")
        declarations = []
        for word in line.words:
            name, sep, default = word.text.partition("=")
            if not name:
                raise self._fail(
                    "ARG names can not be blank",
                    ParseErrorKind.INVALID_ARGUMENT,
                    line,
                    word,
                )
            declarations.append(
                BuildArgDeclaration(name=name, default=default if sep else None)
            )
        return ArgInstruction(location=line.location, declarations=tuple(declarations))

    def _parse_workdir(self, line: LogicalLine) -> WorkdirInstruction:
        self._require(line, 0, "a path")
        return WorkdirInstruction(location=line.location, path=line.rest(0))

    def _parse_user(self, line: LogicalLine) -> UserInstruction:
        self._require(line, 0, "a user")
        if len(line.words) > 1:
            raise self._fail(
                "USER expects a single 'user[:group]' argument",
                ParseErrorKind.INVALID_ARGUMENT,
                line,
                line.words[1],
            )
        user, group = split_outside_braces(line.words[0].text, ":")
        return UserInstruction(location=line.location, user=user, group=group)

    def _parse_expose(self, line: LogicalLine) -> ExposeInstruction:
        self._require(line, 0, "at least one port")
        return ExposeInstruction(location=line.location, ports=tuple(line.texts()))

    def _parse_volume(self, line: LogicalLine) -> VolumeInstruction:
        self._require(line, 0, "at least one path")
        return VolumeInstruction(
            location=line.location, paths=tuple(self._path_list(line, 0))
        )

    def _parse_healthcheck(self, line: LogicalLine) -> HealthcheckInstruction:
        flags, index = self._take_flags(
            line,
            {
                "interval": VALUE,
                "timeout": VALUE,
                "start-period": VALUE,
                "start-interval": VALUE,
                "retries": VALUE,
            },
        )
        self._require(line, index, "CMD or NONE")
        mode_word = line.words[index]
        mode = mode_word.text.upper()
        retries = self._last(flags, "retries")
        if retries is not None:
            try:
                retries = int(retries)
            except ValueError:
                raise self._fail(
                    f"HEALTHCHECK --retries expects an integer, got {retries!r}",
                    ParseErrorKind.INVALID_ARGUMENT,
                    line,
                )
        command = None
        if mode == HealthcheckMode.CMD.value:
            command = self._command(line, index + 1)
        elif mode == HealthcheckMode.NONE.value:
            if index + 1 < len(line.words):
                raise self._fail(
                    "HEALTHCHECK NONE takes no arguments",
                    ParseErrorKind.INVALID_ARGUMENT,
                    line,
                    line.words[index + 1],
                )
        else:
            raise self._fail(
                f"HEALTHCHECK expects CMD or NONE, got {mode_word.text!r}",
                ParseErrorKind.INVALID_ARGUMENT,
                line,
                mode_word,
            )
        return HealthcheckInstruction(
            location=line.location,
            mode=HealthcheckMode(mode),
            command=command,
            interval=self._last(flags, "interval"),
            timeout=self._last(flags, "timeout"),
            start_period=self._last(flags, "start-period"),
            start_interval=self._last(flags, "start-interval"),
            retries=retries,
        )

    def _parse_entrypoint(self, line: LogicalLine) -> EntrypointInstruction:
        return EntrypointInstruction(location=line.location, command=self._command(line, 0))

    def _parse_cmd(self, line: LogicalLine) -> CmdInstruction:
        return CmdInstruction(location=line.location, command=self._command(line, 0))

    def _parse_shell(self, line: LogicalLine) -> ShellInstruction:
        return ShellInstruction(location=line.location, command=self._command(line, 0))

    def _parse_onbuild(self, line: LogicalLine) -> OnbuildInstruction:
        self._require(line, 0, "a trigger instruction")
        trigger = self._parse_instruction(line.nested())
        return OnbuildInstruction(
            location=line.location, trigger=trigger, expression=line.rest(0)
        )

    def _parse_stopsignal(self, line: LogicalLine) -> StopSignalInstruction:
        self._require(line, 0, "a signal")
        if len(line.words) > 1:
            raise self._fail(
                "STOPSIGNAL expects a single signal",
                ParseErrorKind.INVALID_ARGUMENT,
                line,
                line.words[1],
            )
        return StopSignalInstruction(location=line.location, signal=line.words[0].text)

    def _parse_maintainer(self, line: LogicalLine) -> MaintainerInstruction:
        self._require(line, 0, "a name")
        return MaintainerInstruction(location=line.location, name=line.rest(0))


def parse(tokens: Iterable[Token]) -> DockerfileAST:
    """Parse a token stream into a ``DockerfileAST``."""
    return DockerfileParser().parse_tokens(tokens)


def parse_string(content: str) -> DockerfileAST:
    return DockerfileParser().parse_from_string(content)
