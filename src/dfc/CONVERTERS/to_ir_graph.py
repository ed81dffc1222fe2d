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
Converters for lowering a validated Dockerfile AST into an IR graph.

Lowering runs in three steps:

1. A silent planning pass walks every stage to find the stages each one
   depends on (``FROM <stage>``, ``COPY --from``, ``RUN --mount from=``),
   substituting variables where a reference uses them.
2. ``StageDependencyResolver`` keeps the target stage and its transitive
   dependencies, ordered dependencies first.
3. Each kept stage is lowered into a chain of operations. Variables are
   substituted with ENV taking precedence over supplied build arguments,
   which take precedence over ARG defaults. Unset variables become empty
   strings and are reported as ``SubstitutionWarning``.
"""
import logging
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Type, Union

from pydantic import BaseModel

from ..BUILDERS.dependency_resolver import StageDependencyResolver
from ..errors import LoweringError, LoweringErrorKind, RequestError
from ..MODELS.build_request import Platform
from ..MODELS.dockerfile_ast import (
    AddInstruction,
    ArgInstruction,
    CmdInstruction,
    CommandLine,
    CopyInstruction,
    DockerfileAST,
    EntrypointInstruction,
    EnvInstruction,
    ExposeInstruction,
    HealthcheckInstruction,
    HealthcheckMode,
    InstructionBase,
    KeyValue,
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
from ..MODELS.ir_graph import (
    ExecOp,
    FileAction,
    FileOp,
    ImageConfig,
    IRGraph,
    MetaOp,
    MountSpec,
    OperationBase,
    StageGraph,
    SubstitutionWarning,
)
from ..UTILS.hashing import cache_key
from ..UTILS.string_interpolation import EnvironmentInterpolator, MissingVariableError
from ..VALIDATORS.dockerfile_validator import (
    GLOBAL_PLATFORM_ARGS,
    ResolutionTable,
    ValidationResult,
    resolve_stage_reference,
)

logger = logging.getLogger(__name__)

# A stage reference resolves to a stage index, or stays an image name.
Reference = Union[int, str]


def _plain(value: Any) -> Any:
    """Convert operation fields into JSON-serializable values."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    return value


def normalize_image(text: str) -> str:
    """Fully qualified image name, or the text itself when it does not parse."""
    if text.lower() == "scratch":
        return "scratch"
    try:
        return ImageReference.parse(text).full_name
    except ValueError:
        return text


def same_platform(pinned: Platform, requested: Platform) -> bool:
    """Compare platforms, treating an unspecified architecture or variant as a match."""
    if pinned.os != requested.os:
        return False
    for mine, theirs in (
        (pinned.architecture, requested.architecture),
        (pinned.variant, requested.variant),
    ):
        if mine and theirs and mine != theirs:
            return False
    return True


@dataclass
class _Lowered:
    """What one instruction lowers to, before ids and cache keys are assigned."""

    op_class: Type[OperationBase]
    fields: Dict[str, Any]
    extra_inputs: List[str] = field(default_factory=list)


@dataclass
class _StagePlan:
    stage: Stage
    base_stage: Optional[int]
    references: Dict[Tuple[int, int], Reference]
    env: Dict[str, str]

    @property
    def dependencies(self) -> Set[int]:
        deps = {ref for ref in self.references.values() if isinstance(ref, int)}
        if self.base_stage is not None:
            deps.add(self.base_stage)
        return deps


class _Substituter:
    """Expands variables for one scope and reports what it could not resolve."""

    def __init__(self, converter: "IRConverter", lookup: Callable[[str], Optional[str]],
                 stage: Optional[int], silent: bool):
        self.converter = converter
        self.stage = stage
        self.instruction: Optional[InstructionBase] = None
        self.interpolator = EnvironmentInterpolator(
            lookup,
            on_missing=None if silent else self._missing,
            escape=converter.ast.escape_char,
            strict=not silent,
        )

    def at(self, instruction: InstructionBase) -> None:
        self.instruction = instruction

    def word(self, text: str) -> str:
        return self._run(self.interpolator.expand_word, text)

    def optional(self, text: Optional[str]) -> Optional[str]:
        return None if text is None else self.word(text)

    def text(self, text: str) -> str:
        return self._run(self.interpolator.expand_text, text)

    def _run(self, expand: Callable[[str], str], text: str) -> str:
        try:
            return expand(text)
        except MissingVariableError as exc:
            location = self.instruction.location
            raise LoweringError(
                f"required variable ${exc.name} is not set: {exc.message}",
                LoweringErrorKind.MISSING_BUILD_ARG,
                location.line,
                location.column,
                stage=self.stage,
                stage_name=self.converter.stage_name(self.stage),
                instruction=self.instruction.kind,
            ) from exc

    def _missing(self, name: str) -> None:
        self.converter.record_missing(name, self.stage, self.instruction)


class _StageState:
    """Variable scope and image configuration while walking one stage."""

    def __init__(self, converter: "IRConverter", stage: Stage, meta_values: Dict[str, Optional[str]],
                 inherited: Optional[ImageConfig], silent: bool):
        self.converter = converter
        self.stage = stage
        self.meta_values = meta_values
        self.silent = silent
        base = inherited or ImageConfig()
        self.env: Dict[str, str] = base.env_dict()
        self.args: Dict[str, Optional[str]] = {}
        self.workdir = base.workdir
        self.user = base.user
        self.exposed_ports: List[str] = list(base.exposed_ports)
        self.volumes: List[str] = list(base.volumes)
        self.labels: Dict[str, str] = {item.key: item.value for item in base.labels}
        self.entrypoint = base.entrypoint
        self.cmd = base.cmd
        self.cmd_set_here = False
        self.shell = base.shell
        self.healthcheck = base.healthcheck
        self.stop_signal = base.stop_signal
        self.onbuild: List[str] = list(base.onbuild)
        self.maintainer = base.maintainer
        self.platform: Optional[str] = None
        self.position = 0
        self.sub = _Substituter(converter, self.lookup, stage.index, silent)

    def lookup(self, name: str) -> Optional[str]:
        if name in self.env:
            return self.env[name]
        return self.args.get(name)

    def begin(self, position: int, instruction: InstructionBase) -> None:
        self.position = position
        self.sub.at(instruction)

    def declare(self, instruction: ArgInstruction) -> None:
        build_args = self.converter.build_args
        platform_args = self.converter.platform_args
        for declaration in instruction.declarations:
            name = declaration.name
            if not self.silent:
                self.converter.declared_args.add(name)
            if name in build_args:
                value = build_args[name]
            elif name in platform_args:
                value = platform_args[name]
            elif declaration.default is not None:
                value = self.sub.word(declaration.default)
            else:
                value = self.meta_values.get(name)
            self.args[name] = value

    def set_env(self, instruction: EnvInstruction) -> Dict[str, str]:
        # Every value sees the environment from before this instruction.
        values = {item.key: self.sub.word(item.value) for item in instruction.variables}
        self.env.update(values)
        return values

    def exec_env(self) -> Tuple[KeyValue, ...]:
        items = [
            KeyValue(key=name, value=value)
            for name, value in self.args.items()
            if value is not None and name not in self.env
        ]
        items.extend(KeyValue(key=name, value=value) for name, value in self.env.items())
        return tuple(items)

    def config_command(self, command: CommandLine) -> Tuple[str, ...]:
        if command.is_exec:
            return tuple(command.args)
        return tuple(self.shell) + (command.raw,)

    def snapshot(self) -> ImageConfig:
        return ImageConfig(
            env=tuple(KeyValue(key=k, value=v) for k, v in self.env.items()),
            workdir=self.workdir,
            user=self.user,
            exposed_ports=tuple(self.exposed_ports),
            volumes=tuple(self.volumes),
            labels=tuple(KeyValue(key=k, value=v) for k, v in self.labels.items()),
            entrypoint=self.entrypoint,
            cmd=self.cmd,
            shell=self.shell,
            healthcheck=self.healthcheck,
            stop_signal=self.stop_signal,
            onbuild=tuple(self.onbuild),
            maintainer=self.maintainer,
        )


class IRConverter:
    """
    Lowers a Dockerfile AST into an ``IRGraph`` for one target stage.
    """

    def __init__(
        self,
        ast: DockerfileAST,
        build_args: Optional[Dict[str, str]] = None,
        target_stage: Optional[Union[str, int]] = None,
        platform: Optional[Union[Platform, str]] = None,
        resolution: Optional[ResolutionTable] = None,
    ):
        """
        :param ast: A syntax tree that passed validation.
        :param build_args: Supplied build arguments.
        :param target_stage: Stage name or index to build; defaults to the last stage.
        :param platform: Requested platform, as a model or ``os/arch[/variant]``.
        :param resolution: Stage references resolved by the validator.
        :raises RequestError: If ``platform`` is a string that does not parse.
        """
        self.ast = ast
        self.build_args = dict(build_args or {})
        self.target_stage = None if target_stage is None else str(target_stage)
        if isinstance(platform, str):
            try:
                platform = Platform.parse(platform)
            except ValueError as exc:
                raise RequestError(f"invalid platform {platform!r}: {exc}") from exc
        self.platform = platform
        self.platform_args = self.platform.build_args() if self.platform else {}
        self.resolution = resolution or ResolutionTable()
        self.declared_args: Set[str] = set()
        self.warnings: List[SubstitutionWarning] = []
        self._warned: Set[Tuple[str, int, int]] = set()
        self._keys: Dict[str, str] = {}
        self._roots: Dict[int, str] = {}
        self._graphs: Dict[int, StageGraph] = {}
        self._lowerers: Dict[str, Callable[[_StageState, Any, _StagePlan], Optional[_Lowered]]] = {
            "FROM": self._lower_nothing,
            "ARG": self._lower_arg,
            "RUN": self._lower_run,
            "COPY": self._lower_copy,
            "ADD": self._lower_add,
            "ENV": self._lower_env,
            "WORKDIR": self._lower_workdir,
            "USER": self._lower_user,
            "EXPOSE": self._lower_expose,
            "VOLUME": self._lower_volume,
            "LABEL": self._lower_label,
            "HEALTHCHECK": self._lower_healthcheck,
            "ENTRYPOINT": self._lower_entrypoint,
            "CMD": self._lower_cmd,
            "SHELL": self._lower_shell,
            "ONBUILD": self._lower_onbuild,
            "STOPSIGNAL": self._lower_stopsignal,
            "MAINTAINER": self._lower_maintainer,
        }
        check_dispatch_table(self._lowerers, "IRConverter")

    # -- entry point -------------------------------------------------------------

    def convert(self) -> IRGraph:
        """
        Lowers the target stage and the stages it depends on.

        :return: The IR graph.
        :raises LoweringError: On an unknown target, a platform conflict or a
            missing required variable.
        """
        target = self._resolve_target()
        meta_values = self._meta_values()
        plans: Dict[int, _StagePlan] = {}
        for stage in self.ast.stages:
            plans[stage.index] = self._plan_stage(stage, meta_values, plans)

        resolver = StageDependencyResolver(
            {index: plan.dependencies for index, plan in plans.items()}
        )
        needed = resolver.closure(target)
        skipped = sorted(set(plans) - needed)
        if skipped:
            logger.debug(
                "Pruned stage(s) %s not needed by target stage %d",
                ", ".join(map(str, skipped)), target,
            )
        order = resolver.resolve_order(target)

        operations: List[OperationBase] = []
        graphs = self._graphs
        for index in order:
            graph, stage_ops = self._lower_stage(plans[index], graphs, meta_values)
            graphs[index] = graph
            operations.extend(stage_ops)

        unused = sorted(
            name for name in self.build_args
            if name not in self.declared_args and name not in GLOBAL_PLATFORM_ARGS
        )
        if unused:
            logger.debug("Build arguments not consumed: %s", ", ".join(unused))
        platform = str(self.platform) if self.platform else graphs[target].platform
        return IRGraph(
            operations=tuple(operations),
            stages=tuple(graphs[index] for index in sorted(graphs)),
            target=target,
            platform=platform,
            warnings=tuple(self.warnings),
            unused_build_args=tuple(unused),
        )

    # -- bookkeeping ---------------------------------------------------------------

    def stage_name(self, index: Optional[int]) -> Optional[str]:
        if index is None:
            return None
        return self.ast.stages[index].name

    def record_missing(self, name: str, stage: Optional[int],
                       instruction: Optional[InstructionBase]) -> None:
        line = instruction.location.line if instruction else 0
        column = instruction.location.column if instruction else 0
        key = (name, line, column)
        if key in self._warned:
            return
        self._warned.add(key)
        warning = SubstitutionWarning(
            variable=name,
            stage=stage,
            instruction=instruction.kind if instruction else "",
            line=line,
            column=column,
        )
        self.warnings.append(warning)
        logger.warning(warning.message)

    def _resolve_target(self) -> int:
        stages = self.ast.stages
        if not stages:
            raise LoweringError(
                "Dockerfile has no stages to lower", LoweringErrorKind.UNKNOWN_TARGET_STAGE
            )
        if self.target_stage is None:
            return stages[-1].index
        reference = self.target_stage
        if reference.isdecimal() and int(reference) < len(stages):
            return int(reference)
        stage = self.ast.stage_by_name(reference)
        if stage is None:
            known = ", ".join(s.name for s in stages if s.name) or "none"
            raise LoweringError(
                f"target stage {reference!r} does not exist (named stages: {known})",
                LoweringErrorKind.UNKNOWN_TARGET_STAGE,
            )
        return stage.index

    def _meta_values(self) -> Dict[str, Optional[str]]:
        values: Dict[str, Optional[str]] = {}
        sub = _Substituter(self, self._global_lookup(values), None, silent=False)
        for instruction in self.ast.meta_args:
            sub.at(instruction)
            for declaration in instruction.declarations:
                self.declared_args.add(declaration.name)
                if declaration.name in self.build_args:
                    values[declaration.name] = self.build_args[declaration.name]
                elif declaration.default is not None:
                    values[declaration.name] = sub.word(declaration.default)
                else:
                    values[declaration.name] = None
        return values

    def _global_lookup(self, values: Dict[str, Optional[str]]) -> Callable[[str], Optional[str]]:
        def lookup(name: str) -> Optional[str]:
            if values.get(name) is not None:
                return values[name]
            if name in GLOBAL_PLATFORM_ARGS:
                return self.build_args.get(name, self.platform_args.get(name))
            return None
        return lookup

    # -- planning ------------------------------------------------------------------

    def _reference(self, stage: Stage, position: int, slot: int, text: str) -> Reference:
        resolved = self.resolution.stage_for(stage.index, position, slot)
        if resolved is None:
            resolved = resolve_stage_reference(self.ast, text, stage.index)
        return resolved if resolved is not None else text

    def _base_stage(self, stage: Stage, image: str) -> Optional[int]:
        resolved = self.resolution.base_of(stage.index)
        if resolved is None:
            resolved = resolve_stage_reference(self.ast, image, stage.index)
        return resolved

    def _plan_stage(self, stage: Stage, meta_values: Dict[str, Optional[str]],
                    plans: Dict[int, _StagePlan]) -> _StagePlan:
        sub = _Substituter(self, self._global_lookup(meta_values), stage.index, silent=True)
        sub.at(stage.from_instruction)
        base_stage = self._base_stage(stage, sub.word(stage.from_instruction.image))
        inherited = None
        if base_stage is not None:
            inherited = ImageConfig(
                env=tuple(KeyValue(key=k, value=v) for k, v in plans[base_stage].env.items())
            )
        state = _StageState(self, stage, meta_values, inherited, silent=True)
        references: Dict[Tuple[int, int], Reference] = {}
        for position, instruction in enumerate(stage.instructions):
            state.begin(position, instruction)
            if isinstance(instruction, ArgInstruction):
                state.declare(instruction)
            elif isinstance(instruction, EnvInstruction):
                state.set_env(instruction)
            elif isinstance(instruction, CopyInstruction) and instruction.from_stage:
                references[(position, 0)] = self._reference(
                    stage, position, 0, state.sub.word(instruction.from_stage)
                )
            elif isinstance(instruction, RunInstruction):
                for slot, mount in enumerate(instruction.mounts):
                    if mount.from_stage:
                        references[(position, slot)] = self._reference(
                            stage, position, slot, state.sub.word(mount.from_stage)
                        )
        return _StagePlan(stage=stage, base_stage=base_stage, references=references, env=state.env)

    # -- lowering ------------------------------------------------------------------

    def _stage_platform(self, stage: Stage, pinned_text: Optional[str],
                        base: Optional[StageGraph]) -> Optional[str]:
        pinned = None
        if pinned_text:
            try:
                pinned = Platform.parse(pinned_text)
            except ValueError:
                pinned = None
        if self.platform is not None:
            if pinned is not None and not same_platform(pinned, self.platform):
                location = stage.from_instruction.location
                raise LoweringError(
                    f"FROM --platform={pinned} conflicts with requested platform {self.platform}",
                    LoweringErrorKind.PLATFORM_CONFLICT,
                    location.line,
                    location.column,
                    stage=stage.index,
                    stage_name=stage.name,
                    instruction="FROM",
                )
            return str(self.platform)
        if pinned is not None:
            return str(pinned)
        if pinned_text:
            return pinned_text
        return base.platform if base is not None else None

    def _lower_stage(self, plan: _StagePlan, graphs: Dict[int, StageGraph],
                     meta_values: Dict[str, Optional[str]]) -> Tuple[StageGraph, List[OperationBase]]:
        stage = plan.stage
        logger.debug("Lowering stage %d (%s)", stage.index, stage.display_name)
        from_sub = _Substituter(self, self._global_lookup(meta_values), stage.index, silent=False)
        from_sub.at(stage.from_instruction)
        image = from_sub.word(stage.from_instruction.image)
        pinned_text = from_sub.optional(stage.from_instruction.platform)

        base = graphs.get(plan.base_stage) if plan.base_stage is not None else None
        platform = self._stage_platform(stage, pinned_text, base)
        if base is not None:
            root = self._roots[base.index]
            base_image = image
        else:
            root = normalize_image(image)
            base_image = root
        self._roots[stage.index] = root

        state = _StageState(self, stage, meta_values, base.config if base else None, silent=False)
        state.platform = platform
        previous = base.terminal if base is not None else None
        operations: List[OperationBase] = []
        for position, instruction in enumerate(stage.instructions):
            state.begin(position, instruction)
            lowered = self._lowerers[instruction.kind](state, instruction, plan)
            if lowered is None:
                continue
            inputs = [previous] if previous else []
            inputs.extend(i for i in lowered.extra_inputs if i not in inputs)
            payload = {
                "instruction": instruction.kind,
                "args": _plain(lowered.fields),
                "inputs": [self._keys[i] for i in inputs],
            }
            chain_root = not operations
            if chain_root:
                payload["base"] = {"image": root, "platform": platform}
            op_id = f"s{stage.index}.{position}"
            key = cache_key(payload)
            operation = lowered.op_class(
                id=op_id,
                stage=stage.index,
                instruction=instruction.kind,
                inputs=tuple(inputs),
                cache_key=key,
                location=instruction.location,
                base_image=root if chain_root and previous is None else None,
                **lowered.fields,
            )
            logger.debug("%s %s cache key %s", op_id, instruction.kind, key)
            self._keys[op_id] = key
            operations.append(operation)
            previous = op_id

        graph = StageGraph(
            index=stage.index,
            name=stage.name,
            base_image=base_image,
            base_stage=plan.base_stage,
            platform=platform,
            operations=tuple(op.id for op in operations),
            terminal=previous,
            config=state.snapshot(),
        )
        return graph, operations

    def _source(self, reference: Optional[Reference]) -> Tuple[Optional[int], Optional[str], List[str]]:
        """Source stage, source image and extra inputs for a stage reference."""
        if reference is None:
            return None, None, []
        if isinstance(reference, str):
            return None, normalize_image(reference), []
        # Dependencies are lowered first, so the referenced stage is complete.
        terminal = self._graphs[reference].terminal
        if terminal is None:
            return reference, self._roots[reference], []
        return reference, None, [terminal]

    # -- per-instruction lowering ------------------------------------------------

    def _lower_nothing(self, state: _StageState, instruction: InstructionBase,
                       plan: _StagePlan) -> Optional[_Lowered]:
        return None

    def _lower_arg(self, state: _StageState, instruction: ArgInstruction,
                   plan: _StagePlan) -> Optional[_Lowered]:
        state.declare(instruction)
        return None

    def _meta(self, changes: Dict[str, Any]) -> _Lowered:
        return _Lowered(MetaOp, {"changes": changes})

    def _lower_run(self, state: _StageState, instruction: RunInstruction,
                   plan: _StagePlan) -> _Lowered:
        command = instruction.command
        if command.is_exec:
            args = tuple(command.args)
        else:
            args = tuple(state.shell) + (state.sub.text(command.raw),)
        mounts = []
        extra_inputs: List[str] = []
        for slot, mount in enumerate(instruction.mounts):
            reference = plan.references.get((state.position, slot))
            source_stage, source_image, inputs = self._source(reference)
            extra_inputs.extend(inputs)
            mounts.append(MountSpec(
                type=mount.type,
                source=state.sub.optional(mount.source),
                target=state.sub.optional(mount.target),
                source_stage=source_stage,
                source_image=source_image,
                options=tuple(
                    KeyValue(key=option.key, value=state.sub.word(option.value))
                    for option in mount.options
                ),
            ))
        fields = {
            "args": args,
            "env": state.exec_env(),
            "workdir": state.workdir,
            "user": state.user,
            "mounts": tuple(mounts),
            "network": state.sub.optional(instruction.network),
            "security": state.sub.optional(instruction.security),
            "platform": state.platform,
        }
        return _Lowered(ExecOp, fields, extra_inputs)

    def _destination(self, state: _StageState, destination: str) -> str:
        if destination.startswith("/"):
            return destination
        joined = posixpath.normpath(posixpath.join(state.workdir, destination))
        if destination.endswith("/") and not joined.endswith("/"):
            joined += "/"
        return joined

    def _file_fields(self, state: _StageState, instruction: Union[CopyInstruction, AddInstruction],
                     action: FileAction) -> Dict[str, Any]:
        return {
            "action": action,
            "sources": tuple(state.sub.word(source) for source in instruction.sources),
            "destination": self._destination(state, state.sub.word(instruction.destination)),
            "chown": state.sub.optional(instruction.chown),
            "chmod": state.sub.optional(instruction.chmod),
            "link": instruction.link,
            "platform": state.platform,
        }

    def _lower_copy(self, state: _StageState, instruction: CopyInstruction,
                    plan: _StagePlan) -> _Lowered:
        fields = self._file_fields(state, instruction, FileAction.COPY)
        reference = plan.references.get((state.position, 0)) if instruction.from_stage else None
        source_stage, source_image, inputs = self._source(reference)
        fields["source_stage"] = source_stage
        fields["source_image"] = source_image
        return _Lowered(FileOp, fields, inputs)

    def _lower_add(self, state: _StageState, instruction: AddInstruction,
                   plan: _StagePlan) -> _Lowered:
        fields = self._file_fields(state, instruction, FileAction.ADD)
        fields["checksum"] = state.sub.optional(instruction.checksum)
        return _Lowered(FileOp, fields)

    def _lower_env(self, state: _StageState, instruction: EnvInstruction,
                   plan: _StagePlan) -> _Lowered:
        return self._meta({"env": state.set_env(instruction)})

    def _lower_workdir(self, state: _StageState, instruction: WorkdirInstruction,
                       plan: _StagePlan) -> _Lowered:
        path = state.sub.word(instruction.path)
        state.workdir = posixpath.normpath(posixpath.join(state.workdir, path))
        return self._meta({"workdir": state.workdir})

    def _lower_user(self, state: _StageState, instruction: UserInstruction,
                    plan: _StagePlan) -> _Lowered:
        user = state.sub.word(instruction.user)
        if instruction.group is not None:
            user = f"{user}:{state.sub.word(instruction.group)}"
        state.user = user
        return self._meta({"user": user})

    def _lower_expose(self, state: _StageState, instruction: ExposeInstruction,
                      plan: _StagePlan) -> _Lowered:
        ports = []
        for port in instruction.ports:
            port = state.sub.word(port).lower()
            if "/" not in port:
                port += "/tcp"
            ports.append(port)
            if port not in state.exposed_ports:
                state.exposed_ports.append(port)
        return self._meta({"exposed_ports": ports})

    def _lower_volume(self, state: _StageState, instruction: VolumeInstruction,
                      plan: _StagePlan) -> _Lowered:
        paths = [state.sub.word(path) for path in instruction.paths]
        for path in paths:
            if path not in state.volumes:
                state.volumes.append(path)
        return self._meta({"volumes": paths})

    def _lower_label(self, state: _StageState, instruction: LabelInstruction,
                     plan: _StagePlan) -> _Lowered:
        labels = {
            state.sub.word(label.key): state.sub.word(label.value)
            for label in instruction.labels
        }
        state.labels.update(labels)
        return self._meta({"labels": labels})

    def _lower_healthcheck(self, state: _StageState, instruction: HealthcheckInstruction,
                           plan: _StagePlan) -> _Lowered:
        if instruction.mode == HealthcheckMode.NONE:
            healthcheck: Dict[str, Any] = {"test": ["NONE"]}
        else:
            command = instruction.command
            if command.is_exec:
                test = ["CMD"] + list(command.args)
            else:
                test = ["CMD-SHELL", command.raw]
            healthcheck = {"test": test}
            for name, value in (
                ("interval", instruction.interval),
                ("timeout", instruction.timeout),
                ("start_period", instruction.start_period),
                ("start_interval", instruction.start_interval),
                ("retries", instruction.retries),
            ):
                if value is not None:
                    healthcheck[name] = value
        state.healthcheck = healthcheck
        return self._meta({"healthcheck": healthcheck})

    def _lower_entrypoint(self, state: _StageState, instruction: EntrypointInstruction,
                          plan: _StagePlan) -> _Lowered:
        state.entrypoint = state.config_command(instruction.command)
        changes: Dict[str, Any] = {"entrypoint": list(state.entrypoint)}
        if not state.cmd_set_here and state.cmd is not None:
            # An inherited CMD does not survive a new ENTRYPOINT.
            state.cmd = None
            changes["cmd"] = None
        return self._meta(changes)

    def _lower_cmd(self, state: _StageState, instruction: CmdInstruction,
                   plan: _StagePlan) -> _Lowered:
        state.cmd = state.config_command(instruction.command)
        state.cmd_set_here = True
        return self._meta({"cmd": list(state.cmd)})

    def _lower_shell(self, state: _StageState, instruction: ShellInstruction,
                     plan: _StagePlan) -> _Lowered:
        state.shell = tuple(instruction.command.args)
        return self._meta({"shell": list(state.shell)})

    def _lower_onbuild(self, state: _StageState, instruction: OnbuildInstruction,
                       plan: _StagePlan) -> _Lowered:
        state.onbuild.append(instruction.expression)
        return self._meta({"onbuild": [instruction.expression]})

    def _lower_stopsignal(self, state: _StageState, instruction: StopSignalInstruction,
                          plan: _StagePlan) -> _Lowered:
        state.stop_signal = state.sub.word(instruction.signal)
        return self._meta({"stop_signal": state.stop_signal})

    def _lower_maintainer(self, state: _StageState, instruction: MaintainerInstruction,
                          plan: _StagePlan) -> _Lowered:
        state.maintainer = instruction.name
        return self._meta({"maintainer": instruction.name})


def lower(
    ast: DockerfileAST,
    build_args: Optional[Dict[str, str]] = None,
    target_stage: Optional[Union[str, int]] = None,
    platform: Optional[Union[Platform, str]] = None,
    resolution: Optional[ResolutionTable] = None,
    validation: Optional[ValidationResult] = None,
) -> IRGraph:
    """
    Lowers an AST into an IR graph.

    :param validation: When given, lowering is refused if it holds errors and
        its resolution table is used.
    :raises ValidationFailed: If ``validation`` holds errors.
    :raises LoweringError: If the graph cannot be built.
    :raises RequestError: If ``platform`` is a string that does not parse.
    """
    if validation is not None:
        validation.raise_for_errors()
        if resolution is None:
            resolution = validation.resolution
    return IRConverter(ast, build_args, target_stage, platform, resolution).convert()
