import builtins
import os

import pytest

from dfc.BUILDERS.pipeline import DockerfileCompiler
from dfc.errors import RequestError
from dfc.MODELS.build_request import BuildRequest
from dfc.PARSERS.request_parser import BuildRequestLoader


def test_request_file_rejects_python_tags():
    """
    Request files are loaded with yaml.safe_load; object tags must not construct.
    """
    content = "build_args: !!python/object/apply:os.system ['echo injected']\n"
    with pytest.raises(RequestError):
        BuildRequestLoader().load_request_string(content)


def test_compile_does_not_touch_the_filesystem(monkeypatch):
    """
    Paths in COPY/ADD are recorded as written, never opened.
    """
    def forbidden(*args, **kwargs):
        raise AssertionError(f"unexpected open{args}")

    content = "FROM alpine\nCOPY ../../../etc/passwd /stolen\nADD /etc/shadow /x\n"
    monkeypatch.setattr(builtins, "open", forbidden)
    graph = DockerfileCompiler().compile(content).graph
    assert graph.operations[0].sources == ("../../../etc/passwd",)
    assert graph.operations[1].sources == ("/etc/shadow",)


def test_build_arg_values_are_not_executed(tmp_path):
    marker = tmp_path / "injected"
    payload = f"$(touch {marker})"
    content = "FROM alpine\nARG V\nRUN echo $V\n"
    request = BuildRequest(build_args={"V": payload})
    graph = DockerfileCompiler().compile(content, request).graph
    assert graph.operations[0].args[-1] == f"echo {payload}"
    assert not os.path.exists(marker)


def test_substituted_values_are_not_expanded_again():
    content = "FROM alpine\nARG A\nENV B=$A\nRUN echo $B\n"
    request = BuildRequest(build_args={"A": "${SECRET:?leak}"})
    graph = DockerfileCompiler().compile(content, request).graph
    assert graph.operations[0].changes == {"env": {"B": "${SECRET:?leak}"}}
    assert graph.operations[1].args[-1] == "echo ${SECRET:?leak}"
