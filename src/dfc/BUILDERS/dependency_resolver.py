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
Dependency resolution for build stages to determine lowering order.
"""
from typing import Dict, Iterable, Iterator, List, Set, Tuple


class StageDependencyResolver:
    """
    Resolves which stages a target needs and the order to lower them in.

    An edge ``a -> b`` means stage ``a`` uses stage ``b`` as its base, copies
    from it, or mounts it.
    """

    def __init__(self, edges: Dict[int, Iterable[int]]):
        """
        :param edges: Stage index to the indices of the stages it depends on.
        """
        self.edges: Dict[int, Set[int]] = {stage: set(deps) for stage, deps in edges.items()}

    def closure(self, target: int) -> Set[int]:
        """The target and every stage it transitively depends on."""
        needed = set()
        pending = [target]
        while pending:
            stage = pending.pop()
            if stage in needed:
                continue
            needed.add(stage)
            pending.extend(self.edges.get(stage, ()))
        return needed

    def resolve_order(self, target: int) -> List[int]:
        """
        Determines the order to lower stages in using topological sort.

        :param target: Index of the target stage.
        :return: Stage indices, each after all of its dependencies.
        :raises ValueError: If a circular dependency is detected.
        """
        ordered: List[int] = []
        visited: Set[int] = set()
        processing: Set[int] = set()
        # Each entry is a stage and the dependencies still to visit.
        stack: List[Tuple[int, Iterator[int]]] = []

        def enter(stage: int) -> None:
            if stage in processing:
                raise ValueError(f"Circular dependency detected involving stage {stage}")
            if stage in visited:
                return
            processing.add(stage)
            stack.append((stage, iter(sorted(self.edges.get(stage, ())))))

        enter(target)
        while stack:
            stage, pending = stack[-1]
            dep = next(pending, None)
            if dep is not None:
                enter(dep)
                continue
            stack.pop()
            processing.remove(stage)
            visited.add(stage)
            ordered.append(stage)
        return ordered
