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
Loaders for build requests from YAML files, build-argument files and
command line overrides.
"""
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from ..errors import RequestError
from ..MODELS.build_request import BuildRequest, Platform
from .env_parser import EnvParser

logger = logging.getLogger(__name__)

TARGET_KEYS = ("target", "target_stage", "targetStage")
BUILD_ARG_KEYS = ("build_args", "buildArgs")


def parse_build_arg(text: str) -> Dict[str, Optional[str]]:
    """
    Splits a ``KEY=VALUE`` override.

    :return: ``{KEY: VALUE}``, or ``{KEY: None}`` when there is no ``=``.
    :raises RequestError: If the name is empty.
    """
    name, sep, value = text.partition("=")
    if not name:
        raise RequestError(f"invalid build argument {text!r}, expected KEY=VALUE")
    return {name: value if sep else None}


class BuildRequestLoader:
    """
    Accumulates a build request from several sources; later sources win.

    Typical order is a request file, then build-argument files, then command
    line overrides.
    """

    def __init__(self):
        self.build_args: Dict[str, str] = {}
        self.target_stage: Optional[str] = None
        self.platform: Optional[Union[Platform, Dict[str, Any], str]] = None

    def load_request_file(self, path: str) -> "BuildRequestLoader":
        """
        Loads a YAML request file with ``build_args``, ``target`` and
        ``platform`` keys.

        :param path: Path to the request file.
        :return: The loader, for chaining.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as exc:
            raise RequestError(f"cannot read request file {path}: {exc}", filename=path) from exc
        return self.load_request_string(content, source=path)

    def load_request_string(self, content: str, source: str = "<request>") -> "BuildRequestLoader":
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise RequestError(f"{source}: invalid YAML: {exc}", filename=source) from exc
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise RequestError(f"{source}: request must be a mapping", filename=source)

        for key in BUILD_ARG_KEYS:
            args = data.get(key)
            if args is None:
                continue
            if not isinstance(args, dict):
                raise RequestError(f"{source}: {key} must be a mapping", filename=source)
            self.build_args.update(
                {str(k): "" if v is None else str(v) for k, v in args.items()}
            )
        for key in TARGET_KEYS:
            if data.get(key) is not None:
                self.target_stage = str(data[key])
        if data.get("platform") is not None:
            self.platform = data["platform"]
        logger.debug("Loaded build request from %s", source)
        return self

    def load_build_arg_file(self, path: str) -> "BuildRequestLoader":
        """
        Loads build arguments from a file in ``.env`` syntax.
        """
        try:
            self.build_args.update(EnvParser.parse(path))
        except OSError as exc:
            raise RequestError(f"cannot read build-arg file {path}: {exc}", filename=path) from exc
        return self

    def override(
        self,
        build_args: Optional[Mapping[str, str]] = None,
        target_stage: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> "BuildRequestLoader":
        """
        Applies command line overrides.

        :param build_args: Resolved build arguments.
        :param target_stage: Target stage name or index.
        :param platform: Platform string.
        """
        if build_args:
            self.build_args.update(build_args)
        if target_stage is not None:
            self.target_stage = target_stage
        if platform is not None:
            self.platform = platform
        return self

    def override_build_args(self, items: Iterable[str],
                            environ: Mapping[str, str]) -> "BuildRequestLoader":
        """
        Applies ``--build-arg`` values. A bare ``KEY`` takes its value from
        ``environ`` and is skipped when ``environ`` does not define it.
        """
        for item in items:
            for name, value in parse_build_arg(item).items():
                if value is None:
                    if name not in environ:
                        logger.debug("Build argument %s not set in the environment; skipped", name)
                        continue
                    value = environ[name]
                self.build_args[name] = value
        return self

    def build(self) -> BuildRequest:
        """
        Produces the validated build request.

        :raises RequestError: If the platform or any field is invalid.
        """
        try:
            return BuildRequest(
                build_args=self.build_args,
                target_stage=self.target_stage,
                platform=self.platform,
            )
        except ValidationError as exc:
            raise RequestError(f"invalid build request: {exc}") from exc
