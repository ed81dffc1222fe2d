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
Image reference parsing and validation.
Parses base image references like 'nginx:latest' or 'docker.io/library/nginx:1.21'.
"""

import re
from dataclasses import dataclass
from typing import ClassVar, Optional

REPOSITORY_PATTERN = re.compile(
    r"^[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*$"
)
REGISTRY_PATTERN = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9.-]*[a-zA-Z0-9])?(?::[0-9]+)?$")
TAG_PATTERN = re.compile(r"^[a-zA-Z0-9_][a-zA-Z0-9._-]{0,127}$")
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+:[a-f0-9]{64}$")


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - nginx -> docker.io/library/nginx:latest
        - nginx:1.21 -> docker.io/library/nginx:1.21
        - myuser/myimage:v1 -> docker.io/myuser/myimage:v1
        - localhost:5000/app@sha256:abc... -> localhost:5000/app@sha256:abc...
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY: ClassVar[str] = "docker.io"
    DEFAULT_TAG: ClassVar[str] = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse and validate an image reference string.

        Args:
            reference: Image reference string (e.g., 'nginx:latest', 'myuser/myimage:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If any part of the reference is malformed.
        """
        if not reference:
            raise ValueError("image reference cannot be empty")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not DIGEST_PATTERN.match(digest):
                raise ValueError(f"invalid digest format: {digest!r}")

        tag = None
        last_colon = reference.rfind(":")
        if last_colon > reference.rfind("/"):
            reference, tag = reference[:last_colon], reference[last_colon + 1:]
            if not TAG_PATTERN.match(tag):
                raise ValueError(f"invalid tag format: {tag!r}")

        parts = reference.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            repository = "/".join(parts[1:])
            if not REGISTRY_PATTERN.match(registry):
                raise ValueError(f"invalid registry host: {registry!r}")
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference
            if len(parts) == 1:
                repository = f"library/{reference}"

        if not REPOSITORY_PATTERN.match(repository.lower()):
            raise ValueError(f"invalid image name format: {reference!r}")

        if not tag and not digest:
            tag = cls.DEFAULT_TAG
        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        name = f"{self.registry}/{self.repository}"
        if self.tag:
            name = f"{name}:{self.tag}"
        if self.digest:
            name = f"{name}@{self.digest}"
        return name

    @property
    def short_name(self) -> str:
        """Get short image name (without registry if default)."""
        if self.registry != self.DEFAULT_REGISTRY:
            return self.full_name
        repo = self.repository
        if repo.startswith("library/"):
            repo = repo[len("library/"):]
        if self.tag:
            repo = f"{repo}:{self.tag}"
        if self.digest:
            repo = f"{repo}@{self.digest}"
        return repo

    def __str__(self) -> str:
        return self.short_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"
