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
Error types for Dockerfile lexing, parsing, validation and lowering.

Lex and parse errors abort the pipeline. Validation findings are collected
rather than raised (see ``ValidationResult``); ``ValidationFailed`` wraps a
whole result when a caller needs an exception. Lowering errors carry the
stage and instruction that triggered them.
"""
from enum import Enum
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .VALIDATORS.dockerfile_validator import ValidationResult


class LexErrorKind(str, Enum):
    UNTERMINATED_STRING = "unterminated-string"
    UNTERMINATED_VARIABLE = "unterminated-variable"
    INVALID_ESCAPE = "invalid-escape"


class ParseErrorKind(str, Enum):
    UNKNOWN_INSTRUCTION = "unknown-instruction"
    MISSING_ARGUMENT = "missing-argument"
    INVALID_ARGUMENT = "invalid-argument"
    UNKNOWN_FLAG = "unknown-flag"
    UNEXPECTED_TOKEN = "unexpected-token"


class LoweringErrorKind(str, Enum):
    UNKNOWN_TARGET_STAGE = "unknown-target-stage"
    PLATFORM_CONFLICT = "platform-conflict"
    MISSING_BUILD_ARG = "missing-build-arg"


class DockerfileError(Exception):
    """Base exception for all Dockerfile compiler errors."""

    def __init__(
        self,
        message: str,
        kind: Optional[Enum] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
        filename: Optional[str] = None,
    ):
        self.message = message
        self.kind = kind
        self.line = line
        self.column = column
        self.filename = filename
        super().__init__(self._format_message())

    @property
    def location(self) -> str:
        """Format the location as ``file:line:column``, omitting unknown parts."""
        parts = [self.filename or "Dockerfile"]
        if self.line is not None:
            parts.append(str(self.line))
            if self.column is not None:
                parts.append(str(self.column))
        return ":".join(parts)

    def attach_filename(self, filename: Optional[str]) -> None:
        """Record the source file when the error was raised without one."""
        if filename and self.filename is None:
            self.filename = filename
            self.args = (self._format_message(),)

    def _format_message(self) -> str:
        if self.line is not None:
            return f"{self.location}: {self.message}"
        return self.message

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value if self.kind is not None else None,
            "message": self.message,
            "line": self.line,
            "column": self.column,
        }


class LexError(DockerfileError):
    """
    Raised when source text cannot be split into tokens.

    Examples:
    - Unterminated quoted string
    - Invalid escape sequence inside a JSON array
    - ``${`` without a closing brace
    """

    def __init__(self, message: str, kind: LexErrorKind, line: int, column: int):
        super().__init__(message, kind, line, column)


class ParseError(DockerfileError):
    """
    Raised when a logical line is not a well-formed instruction.

    Examples:
    - Unknown instruction keyword
    - ``FROM`` with no image reference
    - Unknown ``--flag`` for an instruction
    """

    def __init__(self, message: str, kind: ParseErrorKind, line: int, column: int):
        super().__init__(message, kind, line, column)


class ValidationFailed(DockerfileError):
    """Raised when a validation pass produced at least one error."""

    def __init__(self, result: "ValidationResult"):
        self.result = result
        first = result.errors[0] if result.errors else None
        count = len(result.errors)
        summary = f"Dockerfile validation failed with {count} error{'s' if count != 1 else ''}"
        details = "\n".join(f"  {finding}" for finding in result.errors)
        super().__init__(
            f"{summary}\n{details}" if details else summary,
            first.kind if first else None,
        )


class LoweringError(DockerfileError):
    """
    Raised when a validated AST cannot be lowered into an IR graph.

    Examples:
    - Target stage that does not exist
    - ``FROM --platform`` that disagrees with the requested platform
    - ``${VAR:?message}`` whose variable has no value
    """

    def __init__(
        self,
        message: str,
        kind: LoweringErrorKind,
        line: Optional[int] = None,
        column: Optional[int] = None,
        stage: Optional[int] = None,
        instruction: Optional[str] = None,
        stage_name: Optional[str] = None,
    ):
        self.stage = stage
        self.stage_name = stage_name
        self.instruction = instruction
        if stage is not None:
            context = f"stage {stage}"
            if stage_name:
                context += f" ({stage_name})"
            if instruction:
                context += f" {instruction}"
            message = f"{context}: {message}"
        super().__init__(message, kind, line, column)


class RequestError(DockerfileError):
    """
    Raised when a build request cannot be loaded.

    Examples:
    - Request file that is not a YAML mapping
    - Malformed ``--build-arg``
    - Unsupported platform string
    """

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message, filename=filename)
