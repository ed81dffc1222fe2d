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
Models for the Dockerfile Abstract Syntax Tree.

Every instruction kind has its own model; ``Instruction`` is the closed union
of them, discriminated on ``kind``. Argument text is recorded as written
(quotes included) and is only substituted when the AST is lowered.
"""
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field


class AstNode(BaseModel):
    model_config = ConfigDict(frozen=True)


class SourceLocation(AstNode):
    """1-based position of the first character of an instruction."""

    line: int
    column: int = 1

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


class Directive(AstNode):
    """A parser directive such as ``# syntax=`` or ``# escape=``."""

    name: str
    value: str
    location: SourceLocation


class ArgumentForm(str, Enum):
    SHELL = "shell"
    EXEC = "exec"


class CommandLine(AstNode):
    """
    Arguments of RUN, CMD, ENTRYPOINT, SHELL and HEALTHCHECK CMD.

    In exec form ``args`` holds the decoded JSON strings. In shell form it
    holds the single command text. ``json_error`` is set when the text looked
    like a JSON array but did not decode.
    """

    form: ArgumentForm
    args: Tuple[str, ...] = ()
    raw: str = ""
    json_error: Optional[str] = None

    @property
    def is_exec(self) -> bool:
        return self.form == ArgumentForm.EXEC


class KeyValue(AstNode):
    key: str
    value: str


class BuildArgDeclaration(AstNode):
    name: str
    default: Optional[str] = None


class Mount(AstNode):
    """A ``RUN --mount=`` specification."""

    type: str = "bind"
    source: Optional[str] = None
    target: Optional[str] = None
    from_stage: Optional[str] = None
    options: Tuple[KeyValue, ...] = ()

    def option(self, key: str) -> Optional[str]:
        for item in self.options:
            if item.key == key:
                return item.value
        return None


class InstructionBase(AstNode):
    location: SourceLocation


class FromInstruction(InstructionBase):
    kind: Literal["FROM"] = "FROM"
    image: str
    alias: Optional[str] = None
    platform: Optional[str] = None


class RunInstruction(InstructionBase):
    kind: Literal["RUN"] = "RUN"
    command: CommandLine
    mounts: Tuple[Mount, ...] = ()
    network: Optional[str] = None
    security: Optional[str] = None


class CopyInstruction(InstructionBase):
    kind: Literal["COPY"] = "COPY"
    sources: Tuple[str, ...]
    destination: str
    from_stage: Optional[str] = None
    chown: Optional[str] = None
    chmod: Optional[str] = None
    link: bool = False

    @property
    def ownership(self) -> Optional[Tuple[str, Optional[str]]]:
        """Split ``--chown=user[:group]`` into ``(user, group)``."""
        if self.chown is None:
            return None
        user, sep, group = self.chown.partition(":")
        return user, (group if sep else None)


class AddInstruction(InstructionBase):
    kind: Literal["ADD"] = "ADD"
    sources: Tuple[str, ...]
    destination: str
    chown: Optional[str] = None
    chmod: Optional[str] = None
    checksum: Optional[str] = None
    link: bool = False


class EnvInstruction(InstructionBase):
    kind: Literal["ENV"] = "ENV"
    variables: Tuple[KeyValue, ...]


class ArgInstruction(InstructionBase):
    kind: Literal["ARG"] = "ARG"
    declarations: Tuple[BuildArgDeclaration, ...]


class WorkdirInstruction(InstructionBase):
    kind: Literal["WORKDIR"] = "WORKDIR"
    path: str


class UserInstruction(InstructionBase):
    kind: Literal["USER"] = "USER"
    user: str
    group: Optional[str] = None


class ExposeInstruction(InstructionBase):
    kind: Literal["EXPOSE"] = "EXPOSE"
    ports: Tuple[str, ...]


class VolumeInstruction(InstructionBase):
    kind: Literal["VOLUME"] = "VOLUME"
    paths: Tuple[str, ...]


class LabelInstruction(InstructionBase):
    kind: Literal["LABEL"] = "LABEL"
    labels: Tuple[KeyValue, ...]


class HealthcheckMode(str, Enum):
    CMD = "CMD"
    NONE = "NONE"


class HealthcheckInstruction(InstructionBase):
    kind: Literal["HEALTHCHECK"] = "HEALTHCHECK"
    mode: HealthcheckMode
    command: Optional[CommandLine] = None
    interval: Optional[str] = None
    timeout: Optional[str] = None
    start_period: Optional[str] = None
    start_interval: Optional[str] = None
    retries: Optional[int] = None

    @property
    def has_options(self) -> bool:
        return any(
            value is not None
            for value in (self.interval, self.timeout, self.start_period,
                          self.start_interval, self.retries)
        )


class EntrypointInstruction(InstructionBase):
    kind: Literal["ENTRYPOINT"] = "ENTRYPOINT"
    command: CommandLine


class CmdInstruction(InstructionBase):
    kind: Literal["CMD"] = "CMD"
    command: CommandLine


class ShellInstruction(InstructionBase):
    kind: Literal["SHELL"] = "SHELL"
    command: CommandLine


class OnbuildInstruction(InstructionBase):
    kind: Literal["ONBUILD"] = "ONBUILD"
    trigger: "Instruction"
    expression: str = ""


class StopSignalInstruction(InstructionBase):
    kind: Literal["STOPSIGNAL"] = "STOPSIGNAL"
    signal: str


class MaintainerInstruction(InstructionBase):
    kind: Literal["MAINTAINER"] = "MAINTAINER"
    name: str


Instruction = Annotated[
    Union[
        FromInstruction,
        RunInstruction,
        CopyInstruction,
        AddInstruction,
        EnvInstruction,
        ArgInstruction,
        WorkdirInstruction,
        UserInstruction,
        ExposeInstruction,
        VolumeInstruction,
        LabelInstruction,
        HealthcheckInstruction,
        EntrypointInstruction,
        CmdInstruction,
        ShellInstruction,
        OnbuildInstruction,
        StopSignalInstruction,
        MaintainerInstruction,
    ],
    Field(discriminator="kind"),
]

OnbuildInstruction.model_rebuild()

INSTRUCTION_TYPES: Dict[str, Type[InstructionBase]] = {
    cls.model_fields["kind"].default: cls
    for cls in (
        FromInstruction, RunInstruction, CopyInstruction, AddInstruction,
        EnvInstruction, ArgInstruction, WorkdirInstruction, UserInstruction,
        ExposeInstruction, VolumeInstruction, LabelInstruction,
        HealthcheckInstruction, EntrypointInstruction, CmdInstruction,
        ShellInstruction, OnbuildInstruction, StopSignalInstruction,
        MaintainerInstruction,
    )
}

INSTRUCTION_KINDS = frozenset(INSTRUCTION_TYPES)


def check_dispatch_table(table: Dict[str, object], name: str) -> None:
    """Fail fast when a per-kind dispatch table misses an instruction kind."""
    missing = INSTRUCTION_KINDS - set(table)
    if missing:
        raise RuntimeError(f"{name} does not handle: {', '.join(sorted(missing))}")


class Stage(AstNode):
    """
    One build stage: a FROM line and the instructions that follow it.
    """

    index: int
    name: Optional[str] = None
    base_image: str
    platform: Optional[str] = None
    from_instruction: FromInstruction
    instructions: Tuple[Instruction, ...] = ()

    @property
    def location(self) -> SourceLocation:
        return self.from_instruction.location

    @property
    def display_name(self) -> str:
        return self.name if self.name is not None else str(self.index)


class DockerfileAST(AstNode):
    """
    Represents the complete Abstract Syntax Tree of a Dockerfile.
    """

    directives: Tuple[Directive, ...] = ()
    preamble: Tuple[Instruction, ...] = ()
    stages: Tuple[Stage, ...] = ()
    escape_char: str = "\\"

    @property
    def meta_args(self) -> Tuple[ArgInstruction, ...]:
        """ARG instructions declared before the first FROM."""
        return tuple(i for i in self.preamble if isinstance(i, ArgInstruction))

    def directive(self, name: str) -> Optional[str]:
        for directive in self.directives:
            if directive.name == name:
                return directive.value
        return None

    def stage_by_name(self, name: str) -> Optional[Stage]:
        """Stage names compare case-insensitively."""
        wanted = name.lower()
        for stage in self.stages:
            if stage.name is not None and stage.name.lower() == wanted:
                return stage
        return None
