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
Models for the intermediate representation handed to an execution engine.

An ``IRGraph`` is a DAG of operations. Each operation names its predecessors
by id and carries a content-addressed cache key.
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .dockerfile_ast import KeyValue, SourceLocation

DEFAULT_SHELL = ("/bin/sh", "-c")


class IRNode(BaseModel):
    model_config = ConfigDict(frozen=True)


class MountSpec(IRNode):
    """A lowered ``RUN --mount``; ``source_stage`` is set for ``from=<stage>``."""

    type: str
    source: Optional[str] = None
    target: Optional[str] = None
    source_stage: Optional[int] = None
    source_image: Optional[str] = None
    options: Tuple[KeyValue, ...] = ()


class OperationBase(IRNode):
    id: str
    stage: int
    instruction: str
    inputs: Tuple[str, ...] = ()
    cache_key: str
    location: SourceLocation
    base_image: Optional[str] = None


class ExecOp(OperationBase):
    """Runs a command in the filesystem produced by its inputs."""

    op: Literal["exec"] = "exec"
    args: Tuple[str, ...]
    env: Tuple[KeyValue, ...] = ()
    workdir: str = "/"
    user: Optional[str] = None
    mounts: Tuple[MountSpec, ...] = ()
    network: Optional[str] = None
    security: Optional[str] = None
    platform: Optional[str] = None


class FileAction(str, Enum):
    COPY = "copy"
    ADD = "add"


class FileOp(OperationBase):
    """Copies files from the build context, another stage or a remote source."""

    op: Literal["file"] = "file"
    action: FileAction
    sources: Tuple[str, ...]
    destination: str
    source_stage: Optional[int] = None
    source_image: Optional[str] = None
    chown: Optional[str] = None
    chmod: Optional[str] = None
    checksum: Optional[str] = None
    link: bool = False
    platform: Optional[str] = None


class MetaOp(OperationBase):
    """Changes image configuration only; ``changes`` is the config delta."""

    op: Literal["meta"] = "meta"
    changes: Dict[str, Any] = Field(default_factory=dict)


Operation = Annotated[Union[ExecOp, FileOp, MetaOp], Field(discriminator="op")]


class ImageConfig(IRNode):
    """Image configuration accumulated over a stage's instructions."""

    env: Tuple[KeyValue, ...] = ()
    workdir: str = "/"
    user: Optional[str] = None
    exposed_ports: Tuple[str, ...] = ()
    volumes: Tuple[str, ...] = ()
    labels: Tuple[KeyValue, ...] = ()
    entrypoint: Optional[Tuple[str, ...]] = None
    cmd: Optional[Tuple[str, ...]] = None
    shell: Tuple[str, ...] = DEFAULT_SHELL
    healthcheck: Optional[Dict[str, Any]] = None
    stop_signal: Optional[str] = None
    onbuild: Tuple[str, ...] = ()
    maintainer: Optional[str] = None

    def env_dict(self) -> Dict[str, str]:
        return {item.key: item.value for item in self.env}


class StageGraph(IRNode):
    """The operations of one lowered stage, in declaration order."""

    index: int
    name: Optional[str] = None
    base_image: str
    base_stage: Optional[int] = None
    platform: Optional[str] = None
    operations: Tuple[str, ...] = ()
    terminal: Optional[str] = None
    config: ImageConfig = Field(default_factory=ImageConfig)


class SubstitutionWarning(IRNode):
    """A variable that had no value and was substituted with an empty string."""

    variable: str
    stage: Optional[int] = None
    instruction: str
    line: int
    column: int

    @property
    def message(self) -> str:
        scope = "global scope" if self.stage is None else f"stage {self.stage}"
        return (
            f"{self.line}:{self.column}: ${self.variable} has no value in {scope} "
            f"{self.instruction}; substituted an empty string"
        )


class IRGraph(IRNode):
    """
    Lowered build graph for one target stage.

    ``operations`` is in dependency order: every operation appears after all
    of its inputs.
    """

    operations: Tuple[Operation, ...] = ()
    stages: Tuple[StageGraph, ...] = ()
    target: int
    platform: Optional[str] = None
    warnings: Tuple[SubstitutionWarning, ...] = ()
    unused_build_args: Tuple[str, ...] = ()

    def operation(self, op_id: str) -> Optional[Operation]:
        for operation in self.operations:
            if operation.id == op_id:
                return operation
        return None

    def stage(self, index: int) -> Optional[StageGraph]:
        for stage in self.stages:
            if stage.index == index:
                return stage
        return None

    def stage_operations(self, index: int) -> List[Operation]:
        return [op for op in self.operations if op.stage == index]

    @property
    def target_stage(self) -> StageGraph:
        return self.stage(self.target)

    @property
    def terminal(self) -> Optional[str]:
        """Id of the operation whose result is the target image."""
        return self.target_stage.terminal

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
