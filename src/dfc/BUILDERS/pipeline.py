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
The compiler pipeline: tokenize, parse, validate and lower.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..CONVERTERS.to_ir_graph import lower
from ..errors import DockerfileError
from ..MODELS.build_request import BuildRequest
from ..MODELS.dockerfile_ast import DockerfileAST
from ..MODELS.ir_graph import IRGraph
from ..PARSERS.dockerfile_lexer import tokenize
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..VALIDATORS.dockerfile_validator import DockerfileValidator, ValidationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompilationResult:
    """Everything the pipeline produced; ``graph`` is None when not lowered."""

    ast: DockerfileAST
    validation: ValidationResult
    graph: Optional[IRGraph] = None


class DockerfileCompiler:
    """
    Runs a Dockerfile through every compiler stage.

    Instances hold no state between calls and can be shared across threads.
    """

    def analyze(self, content: str, filename: Optional[str] = None) -> CompilationResult:
        """
        Parses and validates without lowering.

        :param content: Dockerfile text.
        :param filename: Source name used in error locations.
        :return: The AST and the validation result.
        :raises LexError: On malformed tokens.
        :raises ParseError: On a malformed instruction.
        """
        try:
            logger.debug("Parsing %s", filename or "<string>")
            ast = DockerfileParser().parse_tokens(tokenize(content))
            logger.debug("Parsed %d stage(s)", len(ast.stages))
            validation = DockerfileValidator().validate(ast)
        except DockerfileError as exc:
            exc.attach_filename(filename)
            raise
        return CompilationResult(ast=ast, validation=validation)

    def compile(self, content: str, request: Optional[BuildRequest] = None,
                filename: Optional[str] = None) -> CompilationResult:
        """
        Compiles Dockerfile text into an IR graph.

        :param content: Dockerfile text.
        :param request: Build arguments, target stage and platform.
        :param filename: Source name used in error locations.
        :return: The AST, the validation result and the graph.
        :raises ValidationFailed: If validation found errors.
        :raises LoweringError: If the graph cannot be built.
        """
        request = request or BuildRequest()
        result = self.analyze(content, filename)
        try:
            graph = lower(
                result.ast,
                build_args=request.build_args,
                target_stage=request.target_stage,
                platform=request.platform,
                validation=result.validation,
            )
        except DockerfileError as exc:
            exc.attach_filename(filename)
            raise
        logger.debug(
            "Lowered %d operation(s) for target stage %d", len(graph.operations), graph.target
        )
        return CompilationResult(ast=result.ast, validation=result.validation, graph=graph)

    def compile_file(self, path: str, request: Optional[BuildRequest] = None) -> CompilationResult:
        """
        Compiles the Dockerfile at ``path``.
        """
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
        return self.compile(content, request, filename=path)
