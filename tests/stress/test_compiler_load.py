import time
from concurrent.futures import ThreadPoolExecutor

from dfc.BUILDERS.pipeline import DockerfileCompiler
from dfc.MODELS.build_request import BuildRequest


def chained_dockerfile(stages):
    lines = ["ARG BASE=alpine:3.19", "FROM ${BASE} AS s0", "RUN echo start > /x"]
    for i in range(1, stages):
        lines.extend([
            f"FROM s{i - 1} AS s{i}",
            f"ARG V{i}=default{i}",
            f"ENV E{i}=$V{i}",
            f"RUN echo $E{i} >> /x",
            f"COPY --from=s{i - 1} /x /copy{i}",
        ])
    return "\n".join(lines) + "\n"


def test_large_dockerfile():
    """
    Compiles a 200 stage chain where every stage builds on the previous one.
    """
    content = chained_dockerfile(200)
    start_time = time.time()
    result = DockerfileCompiler().compile(content)
    end_time = time.time()

    graph = result.graph
    assert len(graph.stages) == 200
    assert graph.target == 199
    assert len(graph.operations) == 1 + 199 * 3
    run = graph.operation("s199.2")
    assert run.args[-1] == "echo default199 >> /x"
    assert len(graph.target_stage.config.env) == 199
    print(f"Compiled 200 stages in {end_time - start_time:.2f}s")
    assert end_time - start_time < 30.0


def test_deep_stage_chain():
    """
    Stage chains deeper than the interpreter recursion limit still compile.
    """
    depth = 1500
    lines = ["FROM alpine:3.19 AS s0", "RUN echo 0 > /x"]
    for i in range(1, depth):
        lines.extend([f"FROM s{i - 1} AS s{i}", f"RUN echo {i} >> /x"])
    graph = DockerfileCompiler().compile("\n".join(lines) + "\n").graph
    assert graph.target == depth - 1
    assert len(graph.stages) == depth
    assert [op.id for op in graph.operations][-2:] == [f"s{depth - 2}.0", f"s{depth - 1}.0"]
    assert graph.operation(f"s{depth - 1}.0").inputs == (f"s{depth - 2}.0",)


def test_target_prunes_large_file():
    content = chained_dockerfile(200)
    graph = DockerfileCompiler().compile(content, BuildRequest(target_stage="s10")).graph
    assert [stage.index for stage in graph.stages] == list(range(11))


def test_concurrent_compilation():
    """
    One compiler shared by many threads gives the same graph per request.
    """
    compiler = DockerfileCompiler()
    content = chained_dockerfile(20)
    requests = [
        BuildRequest(build_args={"V5": f"value{i % 4}"}, platform="linux/amd64")
        for i in range(40)
    ]

    def work(request):
        return compiler.compile(content, request).graph

    with ThreadPoolExecutor(max_workers=8) as executor:
        graphs = list(executor.map(work, requests))

    by_value = {}
    for request, graph in zip(requests, graphs):
        keys = tuple(op.cache_key for op in graph.operations)
        by_value.setdefault(request.build_args["V5"], set()).add(keys)
    assert len(by_value) == 4
    assert all(len(keys) == 1 for keys in by_value.values())
    assert len({next(iter(keys)) for keys in by_value.values()}) == 4
