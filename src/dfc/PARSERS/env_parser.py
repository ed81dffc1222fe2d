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
Parsers for build-argument files in ``.env`` syntax.
"""
import io
import logging
from typing import Dict

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


class EnvParser:
    """
    Parser for build-argument files.

    Quoting, ``export`` prefixes and comments follow python-dotenv. Values
    are taken literally: ``${VAR}`` inside a file is not expanded.
    """
    @staticmethod
    def parse(env_path: str) -> Dict[str, str]:
        """
        Parses a build-argument file from a path.

        Args:
            env_path (str): Path to the file.

        Returns:
            Dict[str, str]: Build arguments by name.
        """
        with open(env_path, "r", encoding="utf-8") as f:
            content = f.read()
        return EnvParser.parse_from_string(content)

    @staticmethod
    def parse_from_string(content: str) -> Dict[str, str]:
        """
        Parses build arguments from a string.

        A bare ``KEY`` line without ``=`` yields an empty value.
        """
        values = dotenv_values(stream=io.StringIO(content), interpolate=False)
        args = {}
        for key, value in values.items():
            if value is None:
                logger.debug("Build argument %s has no value in file; using empty string", key)
                value = ""
            args[key] = value
        return args
