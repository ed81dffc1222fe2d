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
Unit tests for lowering a Dockerfile AST into an IR graph.
"""
import re

import pytest

from dfc.CONVERTERS.to_ir_graph import IRConverter, lower, normalize_image
from dfc.errors import DockerfileError, LoweringError, LoweringErrorKind, RequestError, ValidationFailed
from dfc.MODELS.build_request import Platform
from dfc.MODELS.ir_graph import ExecOp, FileAction, FileOp, MetaOp
from dfc.PARSERS.dockerfile_parser import parse_string
from dfc.VALIDATORS.dockerfile_validator import validate

SIMPLE = "FROM alpine:3.19\nENV FOO=bar\nRUN echo $FOO\n"

MULTI_STAGE = """\
FROM golang:1.22 AS build
WORKDIR /src
RUN go build -o /out/app
FROM alpine:3.19
COPY --from=build /out/app /usr/local/bin/app
"""


def lower_text(content, **kwargs):
    ast = parse_string(content)
    return lower(ast, validation=validate(ast), **kwargs)


def keys(graph):
    return [op.cache_key for op in graph.operations]


class TestSingleStage:
    def test_env_then_run(self):
        graph = lower_text(SIMPLE)
        meta, run = graph.operations
        assert isinstance(meta, MetaOp)
        assert meta.id == "s0.0"
        assert meta.changes == {"env": {"FOO": "bar"}}
        assert meta.inputs == ()
        assert meta.base_image == "docker.io/library/alpine:3.19"
        assert isinstance(run, ExecOp)
        assert run.id == "s0.1"
        assert run.args == ("/bin/sh", "-c", "echo bar")
        assert run.inputs == ("s0.0",)
        assert run.base_image is None
        assert [(kv.key, kv.value) for kv in run.env] == [("FOO", "bar")]
        assert graph.terminal == "s0.1"
        assert graph.target == 0
        assert graph.stages[0].base_image == "docker.io/library/alpine:3.19"

    def test_cache_key_format(self):
        for key in keys(lower_text(SIMPLE)):
            assert re.match(r"^sha256:[0-9a-f]{64}$", key)

    def test_idempotent(self):
        assert lower_text(SIMPLE) == lower_text(SIMPLE)

    def test_comments_and_blank_lines_do_not_change_keys(self):
        noisy = "FROM alpine:3.19\n# note\n\nENV FOO=bar\nRUN echo $FOO\n"
        assert keys(lower_text(noisy)) == keys(lower_text(SIMPLE))

    def test_upstream_change_propagates(self):
        base = keys(lower_text(SIMPLE))
        changed_env = keys(lower_text(SIMPLE.replace("FOO=bar", "FOO=baz")))
        assert changed_env[0] != base[0]
        assert changed_env[1] != base[1]

    def test_downstream_change_is_local(self):
        base = keys(lower_text(SIMPLE))
        changed_run = keys(lower_text(SIMPLE.replace("echo $FOO", "echo $FOO done")))
        assert changed_run[0] == base[0]
        assert changed_run[1] != base[1]

    def test_base_image_is_folded_into_first_key(self):
        base = keys(lower_text(SIMPLE))
        rebased = keys(lower_text(SIMPLE.replace("3.19", "3.20")))
        assert rebased[0] != base[0]
        assert rebased[1] != base[1]

    def test_workdir_and_destinations(self):
        graph = lower_text(
            "FROM alpine\nWORKDIR /app\nWORKDIR sub\nCOPY a.txt ./\nCOPY b.txt c.txt\nRUN make\n"
        )
        workdir = graph.operation("s0.1")
        assert workdir.changes == {"workdir": "/app/sub"}
        assert graph.operation("s0.2").destination == "/app/sub/"
        assert graph.operation("s0.3").destination == "/app/sub/c.txt"
        assert graph.operation("s0.4").workdir == "/app/sub"
        assert graph.operation("s0.2").action == FileAction.COPY

    def test_quotes_removed_from_words_but_kept_in_shell_text(self):
        graph = lower_text('FROM alpine\nENV MSG="hello world"\nRUN echo "$MSG"\n')
        meta, run = graph.operations
        assert meta.changes == {"env": {"MSG": "hello world"}}
        assert run.args[-1] == 'echo "hello world"'

    def test_exec_form_is_not_substituted(self):
        graph = lower_text('FROM alpine\nENV HOME=/root\nRUN ["echo", "$HOME"]\n')
        assert graph.operations[1].args == ("echo", "$HOME")

    def test_shell_instruction_changes_run(self):
        graph = lower_text('FROM alpine\nSHELL ["/bin/bash", "-c"]\nRUN echo hi\n')
        assert graph.operations[1].args == ("/bin/bash", "-c", "echo hi")
        assert graph.target_stage.config.shell == ("/bin/bash", "-c")

    def test_user_applies_to_later_runs(self):
        graph = lower_text("FROM alpine\nUSER app:staff\nRUN id\n")
        assert graph.operations[0].changes == {"user": "app:staff"}
        assert graph.operations[1].user == "app:staff"

    def test_image_config(self):
        graph = lower_text(
            "FROM alpine\nEXPOSE 80 53/UDP\nVOLUME /data\nLABEL a=b\n"
            "HEALTHCHECK --interval=30s CMD curl -f http://x/\n"
            "STOPSIGNAL SIGINT\nONBUILD RUN make\nCMD echo hi\n"
        )
        config = graph.target_stage.config
        assert config.exposed_ports == ("80/tcp", "53/udp")
        assert config.volumes == ("/data",)
        assert [(kv.key, kv.value) for kv in config.labels] == [("a", "b")]
        assert config.healthcheck == {"test": ["CMD-SHELL", "curl -f http://x/"], "interval": "30s"}
        assert config.stop_signal == "SIGINT"
        assert config.onbuild == ("RUN make",)
        assert config.cmd == ("/bin/sh", "-c", "echo hi")
        assert all(isinstance(op, MetaOp) for op in graph.operations)

    def test_escape_directive(self):
        graph = lower_text("# escape=`\nFROM alpine\nRUN echo a `\n  b\n")
        text = graph.operations[0].args[-1]
        assert text.startswith("echo a")
        assert text.endswith("b")
        assert "`" not in text

    def test_to_dict(self):
        data = lower_text(SIMPLE).to_dict()
        assert [op["op"] for op in data["operations"]] == ["meta", "exec"]
        assert data["operations"][1]["location"] == {"line": 3, "column": 1}


class TestMultiStage:
    def test_stage_named_after_its_image(self):
        graph = lower_text("FROM golang:1.22 AS build\nFROM golang AS golang\nRUN true\n")
        stage = graph.stage(1)
        assert stage.base_image == "docker.io/library/golang:latest"
        assert stage.base_stage is None
        assert [op.id for op in graph.operations] == ["s1.0"]

    def test_copy_from_stage(self):
        graph = lower_text(MULTI_STAGE)
        assert [op.id for op in graph.operations] == ["s0.0", "s0.1", "s1.0"]
        copy = graph.operation("s1.0")
        assert isinstance(copy, FileOp)
        assert copy.source_stage == 0
        assert copy.source_image is None
        assert copy.inputs == ("s0.1",)
        assert copy.sources == ("/out/app",)
        assert copy.destination == "/usr/local/bin/app"
        assert copy.base_image == "docker.io/library/alpine:3.19"
        assert graph.operation("s0.1").workdir == "/src"

    def test_stage_index_round_trip(self):
        ast = parse_string(MULTI_STAGE)
        graph = lower(ast, validation=validate(ast))
        for index, stage in enumerate(ast.stages):
            assert stage.index == index
            assert graph.stage(index).name == stage.name

    def test_inputs_precede_their_consumers(self):
        graph = lower_text(MULTI_STAGE)
        seen = set()
        for op in graph.operations:
            assert all(source in seen for source in op.inputs)
            seen.add(op.id)

    def test_upstream_stage_change_reaches_copy(self):
        before = lower_text(MULTI_STAGE).operation("s1.0").cache_key
        after = lower_text(MULTI_STAGE.replace("/out/app\n", "/out/app -v\n", 1)).operation("s1.0").cache_key
        assert before != after

    def test_from_previous_stage(self):
        graph = lower_text("FROM alpine AS base\nENV A=1\nFROM base\nRUN echo $A\n")
        run = graph.operation("s1.0")
        assert run.args[-1] == "echo 1"
        assert run.inputs == ("s0.0",)
        assert run.base_image is None
        stage = graph.stage(1)
        assert stage.base_stage == 0
        assert stage.base_image == "base"

    def test_copy_from_empty_stage_uses_root_image(self):
        graph = lower_text(
            "FROM alpine AS base\nFROM base AS empty\nFROM alpine\nCOPY --from=empty /a /b\n"
        )
        copy = graph.operation("s2.0")
        assert copy.source_stage == 1
        assert copy.source_image == "docker.io/library/alpine:latest"
        assert copy.inputs == ()
        assert graph.stage(1).terminal is None

    def test_mount_from_stage(self):
        graph = lower_text(
            "FROM alpine AS deps\nRUN touch /x\n"
            "FROM alpine\nRUN --mount=type=bind,from=deps,target=/deps cat /deps/x\n"
        )
        run = graph.operation("s1.0")
        assert run.mounts[0].source_stage == 0
        assert run.mounts[0].target == "/deps"
        assert run.inputs == ("s0.0",)

    def test_copy_from_image_without_validation(self):
        graph = lower(parse_string("FROM alpine\nCOPY --from=nginx:1.25 /etc/nginx /etc/nginx\n"))
        copy = graph.operations[0]
        assert copy.source_stage is None
        assert copy.source_image == "docker.io/library/nginx:1.25"

    def test_entrypoint_resets_inherited_cmd(self):
        graph = lower_text(
            'FROM alpine AS base\nCMD ["sh"]\nFROM base\nENTRYPOINT ["/app"]\n'
        )
        assert graph.stage(0).config.cmd == ("sh",)
        assert graph.stage(1).config.cmd is None
        assert graph.stage(1).config.entrypoint == ("/app",)

    def test_entrypoint_keeps_cmd_from_same_stage(self):
        graph = lower_text('FROM alpine\nCMD ["x"]\nENTRYPOINT ["/app"]\n')
        assert graph.target_stage.config.cmd == ("x",)


class TestTargetStage:
    CONTENT = (
        "FROM alpine AS a\nRUN echo a\n"
        "FROM alpine AS b\nRUN echo b\n"
        "FROM alpine AS c\nCOPY --from=a /x /y\n"
    )

    def test_default_target_is_last_and_prunes(self):
        graph = lower_text(self.CONTENT)
        assert graph.target == 2
        assert [s.index for s in graph.stages] == [0, 2]
        assert [op.id for op in graph.operations] == ["s0.0", "s2.0"]

    @pytest.mark.parametrize("target", ["b", "B", "1", 1])
    def test_target_by_name_or_index(self, target):
        graph = lower_text(self.CONTENT, target_stage=target)
        assert graph.target == 1
        assert [op.id for op in graph.operations] == ["s1.0"]

    @pytest.mark.parametrize("target", ["nope", "7"])
    def test_unknown_target(self, target):
        with pytest.raises(LoweringError) as exc_info:
            lower_text(self.CONTENT, target_stage=target)
        assert exc_info.value.kind == LoweringErrorKind.UNKNOWN_TARGET_STAGE

    def test_no_stages(self):
        with pytest.raises(LoweringError) as exc_info:
            lower(parse_string(""))
        assert exc_info.value.kind == LoweringErrorKind.UNKNOWN_TARGET_STAGE

    def test_pruned_stage_variables_are_not_reported(self):
        graph = lower_text("FROM alpine AS a\nRUN echo $NOPE\nFROM alpine AS b\nRUN true\n")
        assert graph.warnings == ()


class TestBuildArgs:
    def test_default_used(self):
        graph = lower_text("FROM alpine\nARG NAME=default\nRUN echo $NAME\n")
        assert graph.operations[0].args[-1] == "echo default"
        assert [(kv.key, kv.value) for kv in graph.operations[0].env] == [("NAME", "default")]

    def test_supplied_value_wins(self):
        graph = lower_text("FROM alpine\nARG NAME=default\nRUN echo $NAME\n", build_args={"NAME": "x"})
        assert graph.operations[0].args[-1] == "echo x"
        assert graph.unused_build_args == ()

    def test_declared_without_value(self):
        graph = lower_text("FROM alpine\nARG EMPTY\nRUN echo x${EMPTY}y\n")
        assert graph.operations[0].args[-1] == "echo xy"
        (warning,) = graph.warnings
        assert warning.variable == "EMPTY"
        assert warning.stage == 0
        assert warning.instruction == "RUN"
        assert (warning.line, warning.column) == (3, 1)
        assert "EMPTY" in warning.message

    def test_env_beats_build_arg(self):
        graph = lower_text(
            "FROM alpine\nARG X\nENV X=env\nRUN echo $X\n", build_args={"X": "arg"}
        )
        run = graph.operations[-1]
        assert run.args[-1] == "echo env"
        assert [(kv.key, kv.value) for kv in run.env] == [("X", "env")]

    def test_undeclared_args_are_unused(self):
        graph = lower_text(SIMPLE, build_args={"UNUSED": "1", "TARGETPLATFORM": "linux/amd64"})
        assert graph.unused_build_args == ("UNUSED",)
        assert graph.operations[1].args[-1] == "echo bar"

    def test_required_variable(self):
        content = "FROM alpine\nARG TOKEN\nRUN echo ${TOKEN:?token required}\n"
        with pytest.raises(LoweringError) as exc_info:
            lower_text(content)
        error = exc_info.value
        assert error.kind == LoweringErrorKind.MISSING_BUILD_ARG
        assert error.stage == 0
        assert error.line == 3
        assert "token required" in str(error)
        graph = lower_text(content, build_args={"TOKEN": "abc"})
        assert graph.operations[0].args[-1] == "echo abc"

    def test_meta_arg_scoping(self):
        content = (
            "ARG VERSION=3.18\nFROM alpine:${VERSION}\n"
            "RUN echo $VERSION\nARG VERSION\nRUN echo $VERSION\n"
        )
        graph = lower_text(content)
        assert graph.stages[0].base_image == "docker.io/library/alpine:3.18"
        first, second = graph.operations
        assert (first.id, second.id) == ("s0.0", "s0.2")
        assert first.args[-1] == "echo "
        assert second.args[-1] == "echo 3.18"
        assert [w.variable for w in graph.warnings] == ["VERSION"]

        graph = lower_text(content, build_args={"VERSION": "3.19"})
        assert graph.stages[0].base_image == "docker.io/library/alpine:3.19"
        assert graph.operations[1].args[-1] == "echo 3.19"
        assert graph.warnings[0].line == 3

    def test_from_stage_chosen_by_build_arg(self):
        content = (
            "ARG FLAVOR=slim\nFROM alpine AS slim\nRUN echo slim\n"
            "FROM alpine AS full\nRUN echo full\nFROM ${FLAVOR}\nRUN echo done\n"
        )
        assert lower_text(content).stage(2).base_stage == 0
        graph = lower_text(content, build_args={"FLAVOR": "full"})
        assert graph.stage(2).base_stage == 1
        assert [s.index for s in graph.stages] == [1, 2]


class TestPlatform:
    PINNED = "FROM --platform=linux/arm64 alpine\nRUN true\n"

    def test_conflict(self):
        with pytest.raises(LoweringError) as exc_info:
            lower_text(self.PINNED, platform="linux/amd64")
        error = exc_info.value
        assert error.kind == LoweringErrorKind.PLATFORM_CONFLICT
        assert error.stage == 0
        assert error.line == 1

    def test_matching_request(self):
        graph = lower_text(self.PINNED, platform=Platform.parse("linux/arm64/v8"))
        assert graph.operations[0].platform == "linux/arm64/v8"
        assert graph.platform == "linux/arm64/v8"

    def test_pinned_without_request(self):
        graph = lower_text(self.PINNED)
        assert graph.operations[0].platform == "linux/arm64"
        assert graph.platform == "linux/arm64"

    def test_platform_changes_keys(self):
        amd = keys(lower_text("FROM alpine\nRUN true\n", platform="linux/amd64"))
        arm = keys(lower_text("FROM alpine\nRUN true\n", platform="linux/arm64"))
        assert amd != arm

    def test_target_args(self):
        content = "FROM alpine\nARG TARGETARCH\nRUN echo $TARGETARCH\n"
        graph = lower_text(content, platform="linux/arm64")
        assert graph.operations[0].args[-1] == "echo arm64"
        assert graph.warnings == ()

    def test_build_platform_in_from(self):
        content = "FROM --platform=$BUILDPLATFORM golang\nRUN true\n"
        graph = lower_text(content, build_args={"BUILDPLATFORM": "linux/amd64"})
        assert graph.platform == "linux/amd64"
        graph = lower_text(content)
        assert graph.platform is None

    def test_unparsable_platform_request(self):
        ast = parse_string(self.PINNED)
        with pytest.raises(RequestError, match="plan9/x") as exc_info:
            lower(ast, platform="plan9/x")
        assert isinstance(exc_info.value, DockerfileError)


def test_validation_errors_block_lowering():
    ast = parse_string("FROM alpine\nCOPY --from=nope /a /b\n")
    with pytest.raises(ValidationFailed):
        lower(ast, validation=validate(ast))


def test_converter_is_reusable_per_call():
    ast = parse_string(SIMPLE)
    assert IRConverter(ast).convert() == IRConverter(ast).convert()


def test_normalize_image():
    assert normalize_image("scratch") == "scratch"
    assert normalize_image("nginx") == "docker.io/library/nginx:latest"
    assert normalize_image("not a ref") == "not a ref"
