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
Converters for rendering an IR graph as a Graphviz DOT document.
"""
import os
from typing import Dict, List

from jinja2 import Template

from ..MODELS.ir_graph import ExecOp, FileOp, IRGraph, Operation

DOT_TEMPLATE = """digraph dfc {
  rankdir=LR;
  node [shape=box, fontname="monospace"];
{% for stage in stages %}
  subgraph cluster_{{ stage.index }} {
    label="{{ stage.label }}";
    "base{{ stage.index }}" [label="{{ stage.base }}", shape=ellipse];
{% for node in stage.nodes %}
    "{{ node.id }}" [label="{{ node.label }}"{% if node.terminal %}, penwidth=2{% endif %}];
{% endfor %}
  }
{% endfor %}
{% for edge in edges %}
  "{{ edge.source }}" -> "{{ edge.target }}"{% if edge.style %} [style={{ edge.style }}]{% endif %};
{% endfor %}
}
"""

LABEL_LIMIT = 48


def dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _summary(operation: Operation) -> str:
    if isinstance(operation, ExecOp):
        detail = " ".join(operation.args[-1:]) if operation.args else ""
    elif isinstance(operation, FileOp):
        detail = " ".join(operation.sources) + " -> " + operation.destination
    else:
        detail = ", ".join(sorted(operation.changes))
    if len(detail) > LABEL_LIMIT:
        detail = detail[:LABEL_LIMIT - 3] + "..."
    return f"{operation.id} {operation.instruction}\n{detail}"


class DotConverter:
    """
    Converts an IR graph into a DOT digraph with one cluster per stage.
    """

    def __init__(self, graph: IRGraph):
        """
        :param graph: The lowered IR graph.
        """
        self.graph = graph
        self.template = Template(DOT_TEMPLATE)

    def render(self) -> str:
        """
        Renders the graph.

        :return: DOT source text.
        """
        stages: List[Dict] = []
        edges: List[Dict] = []
        for stage in self.graph.stages:
            label = f"stage {stage.index}" + (f" ({stage.name})" if stage.name else "")
            nodes = []
            for operation in self.graph.stage_operations(stage.index):
                nodes.append({
                    "id": operation.id,
                    "label": dot_escape(_summary(operation)),
                    "terminal": operation.id == stage.terminal,
                })
                if operation.base_image is not None:
                    edges.append({"source": f"base{stage.index}", "target": operation.id, "style": None})
                for source in operation.inputs:
                    same_stage = source.startswith(f"s{stage.index}.")
                    edges.append({
                        "source": source,
                        "target": operation.id,
                        "style": None if same_stage else "dashed",
                    })
            stages.append({
                "index": stage.index,
                "label": dot_escape(label),
                "base": dot_escape(stage.base_image),
                "nodes": nodes,
            })
        return self.template.render(stages=stages, edges=edges)

    def convert(self, output_path: str = "graph.dot") -> str:
        """
        Writes the rendered graph to a file.

        :param output_path: Destination of the DOT file.
        :return: The path written.
        """
        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, "w") as f:
            f.write(self.render())
        return output_path
