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

import gc
import tracemalloc

from dfc.BUILDERS.pipeline import DockerfileCompiler

DOCKERFILE = """\
FROM golang:1.22 AS build
ARG VERSION=dev
RUN go build -ldflags "-X main.version=${VERSION}" -o /out/app
FROM alpine:3.19
COPY --from=build /out/app /app
ENTRYPOINT ["/app"]
"""


def test_repeated_compilation_memory():
    """
    Checks that repeated compilation does not accumulate state.
    """
    compiler = DockerfileCompiler()
    for _ in range(20):
        compiler.compile(DOCKERFILE)

    tracemalloc.start()
    gc.collect()
    snapshot1 = tracemalloc.take_snapshot()

    for _ in range(200):
        compiler.compile(DOCKERFILE)

    gc.collect()
    snapshot2 = tracemalloc.take_snapshot()
    tracemalloc.stop()

    top_stats = snapshot2.compare_to(snapshot1, 'lineno')
    total_diff = sum(stat.size_diff for stat in top_stats)
    print(f"Memory difference after 200 compilations: {total_diff / 1024:.2f} KB")
    assert total_diff < 2 * 1024 * 1024
