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
Semantic validation of a parsed Dockerfile.

The validator walks the AST once and collects every finding instead of
stopping at the first one. Errors block lowering; warnings never do. Stage
references that resolve are recorded in a ``ResolutionTable`` kept beside
the AST, which itself is never modified.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import ClassVar, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..errors import ValidationFailed
from ..MODELS.build_request import Platform
from ..MODELS.dockerfile_ast import (
    AddInstruction,
    ArgInstruction,
    CommandLine,
    CopyInstruction,
    DockerfileAST,
    EnvInstruction,
    ExposeInstruction,
    FromInstruction,
    HealthcheckInstruction,
    HealthcheckMode,
    InstructionBase,
    LabelInstruction,
    MaintainerInstruction,
    OnbuildInstruction,
    RunInstruction,
    ShellInstruction,
    Stage,
    StopSignalInstruction,
    UserInstruction,
    VolumeInstruction,
    WorkdirInstruction,
    check_dispatch_table,
)
from ..MODELS.image_reference import ImageReference
from ..UTILS.string_interpolation import unquote, variable_references

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
STAGE_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.-]*$")
PORT_PATTERN = re.compile(r"^(\d+)(?:-(\d+))?(?:/(tcp|udp|sctp))?$", re.IGNORECASE)
CHOWN_PART_PATTERN = re.compile(r"^(?:\d+|[a-zA-Z_][a-zA-Z0-9_.-]*\$?)$")
CHMOD_PATTERN = re.compile(r"^0?[0-7]{3,4}$")
DURATION_PATTERN = re.compile(r"^(?:\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h))+$")
HEX_PATTERN = re.compile(r"^[a-fA-F0-9]+$")
RTSIGNAL_PATTERN = re.compile(r"^RTM(?:IN|AX)(?:[+-]\d+)?$")
WINDOWS_ABSOLUTE = re.compile(r"^[a-zA-Z]:[\\/]")

CHECKSUM_LENGTHS = {"md5": 32, "sha1": 40, "sha256": 64, "sha512": 128}
NETWORK_MODES = ("default", "none", "host")
SECURITY_MODES = ("insecure", "sandbox")
MOUNT_TYPES = ("bind", "cache", "tmpfs", "secret", "ssh")
FORBIDDEN_TRIGGERS = ("ONBUILD", "FROM", "MAINTAINER")
SINGLETON_INSTRUCTIONS = ("CMD", "ENTRYPOINT", "HEALTHCHECK")
KNOWN_SIGNALS = {
    "ABRT", "ALRM", "BUS", "CHLD", "CONT", "FPE", "HUP", "ILL", "INT", "IO",
    "IOT", "KILL", "PIPE", "POLL", "PROF", "PWR", "QUIT", "SEGV", "STKFLT",
    "STOP", "SYS", "TERM", "TRAP", "TSTP", "TTIN", "TTOU", "URG", "USR1",
    "USR2", "VTALRM", "WINCH", "XCPU", "XFSZ",
}
GLOBAL_PLATFORM_ARGS = (
    "BUILDPLATFORM", "BUILDOS", "BUILDARCH", "BUILDVARIANT",
    "TARGETPLATFORM", "TARGETOS", "TARGETARCH", "TARGETVARIANT",
)
FROM_POSITION = -1


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ValidationErrorKind(str, Enum):
    MISSING_FROM = "missing-from"
    UNKNOWN_STAGE = "unknown-stage"
    DUPLICATE_STAGE_NAME = "duplicate-stage-name"
    MALFORMED_ARGUMENT_FORM = "malformed-argument-form"
    INVALID_PORT = "invalid-port"
    INVALID_SIGNAL = "invalid-signal"
    INVALID_IMAGE_REFERENCE = "invalid-image-reference"
    INVALID_PLATFORM = "invalid-platform"
    INVALID_NAME = "invalid-name"
    INVALID_CHOWN = "invalid-chown"
    INVALID_CHMOD = "invalid-chmod"
    INVALID_CHECKSUM = "invalid-checksum"
    INVALID_MOUNT = "invalid-mount"
    INVALID_NETWORK = "invalid-network"
    INVALID_SECURITY = "invalid-security"
    INVALID_DURATION = "invalid-duration"
    INVALID_HEALTHCHECK = "invalid-healthcheck"
    FORBIDDEN_ONBUILD_TRIGGER = "forbidden-onbuild-trigger"


class ValidationWarningKind(str, Enum):
    UNDECLARED_VARIABLE = "undeclared-variable"
    USED_BEFORE_DECLARATION = "used-before-declaration"
    DUPLICATE_INSTRUCTION = "duplicate-instruction"
    DEPRECATED_INSTRUCTION = "deprecated-instruction"
    RELATIVE_WORKDIR = "relative-workdir"
    RELATIVE_VOLUME = "relative-volume"


@dataclass(frozen=True)
class Finding:
    kind: Enum
    message: str
    line: int
    column: int

    severity: ClassVar[Severity]

    def __str__(self) -> str:
        return f"{self.line}:{self.column}: {self.severity.value}: {self.message} [{self.kind.value}]"

    def to_dict(self) -> dict:
        return {
            "severity": self.severity.value,
            "kind": self.kind.value,
            "message": self.message,
            "line": self.line,
            "column": self.column,
        }


@dataclass(frozen=True)
class ValidationError(Finding):
    severity: ClassVar[Severity] = Severity.ERROR


@dataclass(frozen=True)
class ValidationWarning(Finding):
    severity: ClassVar[Severity] = Severity.WARNING


@dataclass(frozen=True)
class ResolutionTable:
    """
    Stage references resolved during validation.

    Keys are ``(stage index, instruction position, slot)``. The FROM of a
    stage uses position ``-1``. ``slot`` is 0 except for ``RUN`` mounts,
    where it is the mount's index.
    """

    entries: Mapping[Tuple[int, int, int], int] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def stage_for(self, stage: int, position: int, slot: int = 0) -> Optional[int]:
        return self.entries.get((stage, position, slot))

    def base_of(self, stage: int) -> Optional[int]:
        """Index of the stage named by a stage's FROM, if any."""
        return self.stage_for(stage, FROM_POSITION)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class ValidationResult:
    errors: Tuple[ValidationError, ...] = ()
    warnings: Tuple[ValidationWarning, ...] = ()
    resolution: ResolutionTable = field(default_factory=ResolutionTable)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def findings(self) -> Tuple[Finding, ...]:
        return tuple(sorted(self.errors + self.warnings, key=lambda f: (f.line, f.column)))

    def raise_for_errors(self) -> None:
        """
        :raises ValidationFailed: If the result holds at least one error.
        """
        if self.errors:
            raise ValidationFailed(self)


def resolve_stage_reference(ast: DockerfileAST, reference: str, before: int) -> Optional[int]:
    """
    Resolve a stage name or index that must refer to a stage before ``before``.

    :return: The stage index, or None when the reference names no earlier stage.
    """
    if reference.isdecimal():
        index = int(reference)
        return index if index < before else None
    wanted = reference.lower()
    for stage in ast.stages[:before]:
        if stage.name is not None and stage.name.lower() == wanted:
            return stage.index
    return None


def is_absolute_path(path: str) -> bool:
    return path.startswith("/") or bool(WINDOWS_ABSOLUTE.match(path))


@dataclass
class _Scope:
    """Declarations visible at the current point of one stage."""

    stage: Optional[Stage]
    known: Set[str] = field(default_factory=set)
    declared_later: Set[str] = field(default_factory=set)
    in_trigger: bool = False


class DockerfileValidator:
    """
    Validates a Dockerfile AST and collects errors and warnings.
    """

    def __init__(self):
        self._checks = {
            "FROM": self._check_from_trigger,
            "RUN": self._check_run,
            "COPY": self._check_copy,
            "ADD": self._check_add,
            "ENV": self._check_env,
            "ARG": self._check_arg,
            "WORKDIR": self._check_workdir,
            "USER": self._check_user,
            "EXPOSE": self._check_expose,
            "VOLUME": self._check_volume,
            "LABEL": self._check_label,
            "HEALTHCHECK": self._check_healthcheck,
            "ENTRYPOINT": self._check_command,
            "CMD": self._check_command,
            "SHELL": self._check_shell,
            "ONBUILD": self._check_onbuild,
            "STOPSIGNAL": self._check_stopsignal,
            "MAINTAINER": self._check_maintainer,
        }
        check_dispatch_table(self._checks, "DockerfileValidator")
        self._reset(DockerfileAST())

    def _reset(self, ast: DockerfileAST) -> None:
        self.ast = ast
        self.errors: List[ValidationError] = []
        self.warnings: List[ValidationWarning] = []
        self.resolution: Dict[Tuple[int, int, int], int] = {}
        self.meta_names: Set[str] = set()
        self.stage_env: Dict[int, Set[str]] = {}

    def validate(self, ast: DockerfileAST) -> ValidationResult:
        """
        Validates the whole Dockerfile in one pass.

        :param ast: The parsed syntax tree.
        :return: All findings plus the stage resolution table.
        """
        self._reset(ast)
        self._check_preamble()
        self._check_stage_names()
        for stage in ast.stages:
            self._check_stage(stage)
        result = ValidationResult(
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
            resolution=ResolutionTable(MappingProxyType(dict(self.resolution))),
        )
        logger.debug(
            "Validation finished: %d error(s), %d warning(s), %d resolved reference(s)",
            len(result.errors), len(result.warnings), len(result.resolution),
        )
        return result

    # -- reporting -------------------------------------------------------------

    def _error(self, kind: ValidationErrorKind, message: str, node: InstructionBase) -> None:
        self.errors.append(
            ValidationError(kind, message, node.location.line, node.location.column)
        )

    def _warn(self, kind: ValidationWarningKind, message: str, node: InstructionBase) -> None:
        self.warnings.append(
            ValidationWarning(kind, message, node.location.line, node.location.column)
        )

    def _has_variables(self, text: Optional[str]) -> bool:
        return bool(text) and bool(variable_references(text, self.ast.escape_char))

    def _unquote(self, text: str) -> str:
        return unquote(text, self.ast.escape_char)

    # -- structure -------------------------------------------------------------

    def _check_preamble(self) -> None:
        scope = _Scope(stage=None, known=set(GLOBAL_PLATFORM_ARGS))
        reported = False
        for instruction in self.ast.preamble:
            if isinstance(instruction, ArgInstruction):
                self._check_arg(scope, instruction, 0)
                continue
            if not reported:
                self._error(
                    ValidationErrorKind.MISSING_FROM,
                    f"{instruction.kind} appears before the first FROM; "
                    "only ARG may precede FROM",
                    instruction,
                )
                reported = True
        self.meta_names = {
            declaration.name
            for arg in self.ast.meta_args
            for declaration in arg.declarations
        }
        if not self.ast.stages and not reported:
            self.errors.append(ValidationError(
                ValidationErrorKind.MISSING_FROM,
                "Dockerfile has no FROM instruction",
                1,
                1,
            ))

    def _check_stage_names(self) -> None:
        seen: Dict[str, Stage] = {}
        for stage in self.ast.stages:
            if stage.name is None:
                continue
            if not STAGE_NAME_PATTERN.match(stage.name):
                self._error(
                    ValidationErrorKind.INVALID_NAME,
                    f"invalid stage name {stage.name!r}",
                    stage.from_instruction,
                )
            key = stage.name.lower()
            if key in seen:
                self._error(
                    ValidationErrorKind.DUPLICATE_STAGE_NAME,
                    f"stage name {stage.name!r} is already used by stage "
                    f"{seen[key].index} (line {seen[key].location.line})",
                    stage.from_instruction,
                )
            else:
                seen[key] = stage

    def _check_stage(self, stage: Stage) -> None:
        self._check_from(stage)
        base = self.resolution.get((stage.index, FROM_POSITION, 0))
        inherited = set(self.stage_env.get(base, set())) if base is not None else set()
        declared_args = {
            declaration.name
            for instruction in stage.instructions
            if isinstance(instruction, ArgInstruction)
            for declaration in instruction.declarations
        }
        scope = _Scope(stage=stage, known=inherited, declared_later=declared_args)
        counts: Dict[str, int] = {}
        for position, instruction in enumerate(stage.instructions):
            if instruction.kind in SINGLETON_INSTRUCTIONS:
                counts[instruction.kind] = counts.get(instruction.kind, 0) + 1
                if counts[instruction.kind] > 1:
                    self._warn(
                        ValidationWarningKind.DUPLICATE_INSTRUCTION,
                        f"multiple {instruction.kind} instructions in stage "
                        f"{stage.display_name}; only the last takes effect",
                        instruction,
                    )
            self._checks[instruction.kind](scope, instruction, position)
        self.stage_env[stage.index] = inherited | {
            variable.key
            for instruction in stage.instructions
            if isinstance(instruction, EnvInstruction)
            for variable in instruction.variables
        }

    def _check_from(self, stage: Stage) -> None:
        instruction = stage.from_instruction
        scope = _Scope(stage=None, known=self.meta_names | set(GLOBAL_PLATFORM_ARGS))
        self._check_variables(scope, instruction, [instruction.image, instruction.platform])
        if instruction.platform and not self._has_variables(instruction.platform):
            try:
                Platform.parse(self._unquote(instruction.platform))
            except ValueError as exc:
                self._error(ValidationErrorKind.INVALID_PLATFORM, str(exc), instruction)
        if self._has_variables(instruction.image):
            return
        image = self._unquote(instruction.image)
        resolved = resolve_stage_reference(self.ast, image, stage.index)
        if resolved is not None:
            self.resolution[(stage.index, FROM_POSITION, 0)] = resolved
            return
        if image.isdecimal():
            self._error(
                ValidationErrorKind.UNKNOWN_STAGE,
                f"FROM {image}: stage index must refer to an earlier stage",
                instruction,
            )
            return
        later = self.ast.stage_by_name(image)
        if later is not None and later.index > stage.index:
            self._error(
                ValidationErrorKind.UNKNOWN_STAGE,
                f"FROM {image}: stage {later.name!r} is declared after this stage",
                instruction,
            )
            return
        if image.lower() == "scratch":
            return
        try:
            ImageReference.parse(image)
        except ValueError as exc:
            self._error(
                ValidationErrorKind.INVALID_IMAGE_REFERENCE,
                f"FROM {image}: {exc}",
                instruction,
            )

    # -- variables -------------------------------------------------------------

    def _check_variables(
        self, scope: _Scope, instruction: InstructionBase, texts: Iterable[Optional[str]]
    ) -> None:
        if scope.in_trigger:
            return
        reported: Set[str] = set()
        for text in texts:
            if not text:
                continue
            for name in variable_references(text, self.ast.escape_char):
                if name in scope.known or name in reported:
                    continue
                reported.add(name)
                if name in scope.declared_later:
                    self._warn(
                        ValidationWarningKind.USED_BEFORE_DECLARATION,
                        f"${name} is used before its ARG declaration",
                        instruction,
                    )
                elif scope.stage is not None and name in self.meta_names:
                    self._warn(
                        ValidationWarningKind.UNDECLARED_VARIABLE,
                        f"${name} is a global ARG; declare 'ARG {name}' in the "
                        "stage to use it",
                        instruction,
                    )
                else:
                    self._warn(
                        ValidationWarningKind.UNDECLARED_VARIABLE,
                        f"${name} is not declared with ARG or ENV",
                        instruction,
                    )

    # -- per-instruction checks ----------------------------------------------

    def _check_from_trigger(self, scope: _Scope, instruction: FromInstruction, position: int) -> None:
        # Only reachable as an ONBUILD trigger, which is reported there.
        return

    def _check_stage_reference(
        self, scope: _Scope, instruction: InstructionBase, reference: str,
        position: int, slot: int, what: str,
    ) -> None:
        if scope.in_trigger or scope.stage is None or self._has_variables(reference):
            return
        reference = self._unquote(reference)
        resolved = resolve_stage_reference(self.ast, reference, scope.stage.index)
        if resolved is None:
            self._error(
                ValidationErrorKind.UNKNOWN_STAGE,
                f"{what}={reference} does not name an earlier stage",
                instruction,
            )
        else:
            self.resolution[(scope.stage.index, position, slot)] = resolved

    def _check_command_form(self, instruction: InstructionBase, command: CommandLine) -> None:
        if command.json_error:
            self._error(
                ValidationErrorKind.MALFORMED_ARGUMENT_FORM,
                f"{instruction.kind} arguments look like a JSON array but do not "
                f"parse: {command.json_error}",
                instruction,
            )

    def _check_run(self, scope: _Scope, instruction: RunInstruction, position: int) -> None:
        texts = [instruction.network, instruction.security]
        if not instruction.command.is_exec:
            texts.append(instruction.command.raw)
        for mount in instruction.mounts:
            texts.extend([mount.source, mount.target, mount.from_stage])
            texts.extend(option.value for option in mount.options)
        self._check_variables(scope, instruction, texts)
        self._check_command_form(instruction, instruction.command)
        if instruction.network is not None and not self._has_variables(instruction.network):
            if self._unquote(instruction.network) not in NETWORK_MODES:
                self._error(
                    ValidationErrorKind.INVALID_NETWORK,
                    f"invalid network mode {instruction.network!r}, expected one of "
                    f"{', '.join(NETWORK_MODES)}",
                    instruction,
                )
        if instruction.security is not None and not self._has_variables(instruction.security):
            if self._unquote(instruction.security) not in SECURITY_MODES:
                self._error(
                    ValidationErrorKind.INVALID_SECURITY,
                    f"invalid security mode {instruction.security!r}, expected one of "
                    f"{', '.join(SECURITY_MODES)}",
                    instruction,
                )
        for slot, mount in enumerate(instruction.mounts):
            problem = self._mount_problem(mount)
            if problem:
                self._error(ValidationErrorKind.INVALID_MOUNT, problem, instruction)
            if mount.from_stage:
                self._check_stage_reference(
                    scope, instruction, mount.from_stage, position, slot, "--mount from"
                )

    @staticmethod
    def _mount_problem(mount) -> Optional[str]:
        if mount.type not in MOUNT_TYPES:
            return f"invalid mount type {mount.type!r}, expected one of {', '.join(MOUNT_TYPES)}"
        if mount.type in ("bind", "cache", "tmpfs") and not mount.target:
            return f"{mount.type} mount requires a target"
        if mount.type == "secret" and not (mount.target or mount.option("id")):
            return "secret mount requires an id or a target"
        if mount.type not in ("bind", "cache") and mount.from_stage:
            return f"{mount.type} mount does not accept from="
        return None

    def _check_ownership(self, instruction: InstructionBase, chown: Optional[str],
                         chmod: Optional[str]) -> None:
        if chown is not None and not self._has_variables(chown):
            user, sep, group = self._unquote(chown).partition(":")
            parts = [user, group] if sep else [user]
            if not all(part and CHOWN_PART_PATTERN.match(part) for part in parts):
                self._error(
                    ValidationErrorKind.INVALID_CHOWN,
                    f"invalid --chown value {chown!r}, expected user[:group]",
                    instruction,
                )
        if chmod is not None and not self._has_variables(chmod):
            if not CHMOD_PATTERN.match(self._unquote(chmod)):
                self._error(
                    ValidationErrorKind.INVALID_CHMOD,
                    f"invalid --chmod value {chmod!r}, expected an octal mode",
                    instruction,
                )

    def _check_copy(self, scope: _Scope, instruction: CopyInstruction, position: int) -> None:
        self._check_variables(
            scope,
            instruction,
            list(instruction.sources)
            + [instruction.destination, instruction.from_stage, instruction.chown, instruction.chmod],
        )
        self._check_ownership(instruction, instruction.chown, instruction.chmod)
        if instruction.from_stage is not None:
            self._check_stage_reference(
                scope, instruction, instruction.from_stage, position, 0, "COPY --from"
            )

    def _check_add(self, scope: _Scope, instruction: AddInstruction, position: int) -> None:
        self._check_variables(
            scope,
            instruction,
            list(instruction.sources)
            + [instruction.destination, instruction.chown, instruction.chmod, instruction.checksum],
        )
        self._check_ownership(instruction, instruction.chown, instruction.chmod)
        checksum = instruction.checksum
        if checksum is None or self._has_variables(checksum):
            return
        algorithm, sep, digest = self._unquote(checksum).partition(":")
        expected = CHECKSUM_LENGTHS.get(algorithm)
        if not sep or expected is None:
            self._error(
                ValidationErrorKind.INVALID_CHECKSUM,
                f"invalid --checksum {checksum!r}, expected one of "
                f"{', '.join(CHECKSUM_LENGTHS)} followed by ':<hex digest>'",
                instruction,
            )
        elif len(digest) != expected or not HEX_PATTERN.match(digest):
            self._error(
                ValidationErrorKind.INVALID_CHECKSUM,
                f"invalid {algorithm} digest, expected {expected} hex characters",
                instruction,
            )

    def _check_env(self, scope: _Scope, instruction: EnvInstruction, position: int) -> None:
        self._check_variables(scope, instruction, [v.value for v in instruction.variables])
        for variable in instruction.variables:
            if not NAME_PATTERN.match(variable.key):
                self._error(
                    ValidationErrorKind.INVALID_NAME,
                    f"invalid environment variable name {variable.key!r}",
                    instruction,
                )
        scope.known.update(v.key for v in instruction.variables)

    def _check_arg(self, scope: _Scope, instruction: ArgInstruction, position: int) -> None:
        self._check_variables(scope, instruction, [d.default for d in instruction.declarations])
        for declaration in instruction.declarations:
            if not NAME_PATTERN.match(declaration.name):
                self._error(
                    ValidationErrorKind.INVALID_NAME,
                    f"invalid build argument name {declaration.name!r}",
                    instruction,
                )
            scope.known.add(declaration.name)
            scope.declared_later.discard(declaration.name)

    def _check_workdir(self, scope: _Scope, instruction: WorkdirInstruction, position: int) -> None:
        self._check_variables(scope, instruction, [instruction.path])
        path = self._unquote(instruction.path)
        if not path.startswith("$") and not is_absolute_path(path):
            self._warn(
                ValidationWarningKind.RELATIVE_WORKDIR,
                f"WORKDIR {path} is relative; it resolves against the previous WORKDIR",
                instruction,
            )

    def _check_user(self, scope: _Scope, instruction: UserInstruction, position: int) -> None:
        self._check_variables(scope, instruction, [instruction.user, instruction.group])

    def _check_expose(self, scope: _Scope, instruction: ExposeInstruction, position: int) -> None:
        self._check_variables(scope, instruction, instruction.ports)
        for port in instruction.ports:
            if self._has_variables(port):
                continue
            if not self._valid_port(self._unquote(port)):
                self._error(
                    ValidationErrorKind.INVALID_PORT,
                    f"invalid port {port!r}, expected port[-port][/tcp|udp|sctp] "
                    "in the range 1-65535",
                    instruction,
                )

    @staticmethod
    def _valid_port(text: str) -> bool:
        match = PORT_PATTERN.match(text)
        if not match:
            return False
        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) else start
        return 1 <= start <= end <= 65535

    def _check_volume(self, scope: _Scope, instruction: VolumeInstruction, position: int) -> None:
        self._check_variables(scope, instruction, instruction.paths)
        for path in instruction.paths:
            path = self._unquote(path)
            if not path.startswith("$") and not is_absolute_path(path):
                self._warn(
                    ValidationWarningKind.RELATIVE_VOLUME,
                    f"VOLUME {path} is not an absolute path",
                    instruction,
                )

    def _check_label(self, scope: _Scope, instruction: LabelInstruction, position: int) -> None:
        self._check_variables(
            scope, instruction, [t for label in instruction.labels for t in (label.key, label.value)]
        )

    def _check_healthcheck(
        self, scope: _Scope, instruction: HealthcheckInstruction, position: int
    ) -> None:
        if instruction.mode == HealthcheckMode.NONE:
            if instruction.has_options:
                self._error(
                    ValidationErrorKind.INVALID_HEALTHCHECK,
                    "HEALTHCHECK NONE does not take options",
                    instruction,
                )
            return
        command = instruction.command
        self._check_command_form(instruction, command)
        if command.is_exec and not command.args:
            self._error(
                ValidationErrorKind.INVALID_HEALTHCHECK,
                "HEALTHCHECK CMD requires at least one command",
                instruction,
            )
        if instruction.retries is not None and instruction.retries < 0:
            self._error(
                ValidationErrorKind.INVALID_HEALTHCHECK,
                "HEALTHCHECK --retries must be non-negative",
                instruction,
            )
        for option, value in (
            ("interval", instruction.interval),
            ("timeout", instruction.timeout),
            ("start-period", instruction.start_period),
            ("start-interval", instruction.start_interval),
        ):
            if value is not None and not DURATION_PATTERN.match(self._unquote(value)):
                self._error(
                    ValidationErrorKind.INVALID_DURATION,
                    f"invalid --{option} duration {value!r}, expected e.g. 30s, 1m30s or 500ms",
                    instruction,
                )

    def _check_command(self, scope: _Scope, instruction: InstructionBase, position: int) -> None:
        self._check_command_form(instruction, instruction.command)

    def _check_shell(self, scope: _Scope, instruction: ShellInstruction, position: int) -> None:
        command = instruction.command
        if command.json_error:
            self._check_command_form(instruction, command)
        elif not command.is_exec:
            self._error(
                ValidationErrorKind.MALFORMED_ARGUMENT_FORM,
                'SHELL requires the JSON form, e.g. SHELL ["/bin/sh", "-c"]',
                instruction,
            )
        elif not command.args:
            self._error(
                ValidationErrorKind.MALFORMED_ARGUMENT_FORM,
                "SHELL requires at least one argument",
                instruction,
            )

    def _check_onbuild(self, scope: _Scope, instruction: OnbuildInstruction, position: int) -> None:
        trigger = instruction.trigger
        if trigger.kind in FORBIDDEN_TRIGGERS:
            self._error(
                ValidationErrorKind.FORBIDDEN_ONBUILD_TRIGGER,
                f"{trigger.kind} is not allowed as an ONBUILD trigger",
                instruction,
            )
            return
        trigger_scope = _Scope(stage=scope.stage, in_trigger=True)
        self._checks[trigger.kind](trigger_scope, trigger, position)

    def _check_stopsignal(self, scope: _Scope, instruction: StopSignalInstruction, position: int) -> None:
        self._check_variables(scope, instruction, [instruction.signal])
        if self._has_variables(instruction.signal):
            return
        signal = self._unquote(instruction.signal).upper()
        if signal.isdecimal():
            valid = 0 < int(signal) <= 64
        else:
            name = signal[3:] if signal.startswith("SIG") else signal
            valid = name in KNOWN_SIGNALS or bool(RTSIGNAL_PATTERN.match(name))
        if not valid:
            self._error(
                ValidationErrorKind.INVALID_SIGNAL,
                f"invalid stop signal {instruction.signal!r}",
                instruction,
            )

    def _check_maintainer(self, scope: _Scope, instruction: MaintainerInstruction, position: int) -> None:
        self._warn(
            ValidationWarningKind.DEPRECATED_INSTRUCTION,
            "MAINTAINER is deprecated; use LABEL maintainer=... instead",
            instruction,
        )


def validate(ast: DockerfileAST) -> ValidationResult:
    """Validate an AST and return every finding."""
    return DockerfileValidator().validate(ast)
