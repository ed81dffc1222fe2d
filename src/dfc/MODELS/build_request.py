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
Models for a build request: build arguments, target stage and platform.
"""
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_OS = ("linux", "windows", "darwin", "freebsd")
SUPPORTED_ARCHITECTURES = ("amd64", "arm64", "arm", "386", "ppc64le", "s390x", "riscv64")


class Platform(BaseModel):
    """
    Target platform of a build, written ``os[/architecture[/variant]]``.
    """
    model_config = ConfigDict(frozen=True)

    os: str
    architecture: Optional[str] = None
    variant: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "Platform":
        """
        Parses and validates a platform string such as ``linux/arm64/v8``.

        :param text: The platform specification.
        :return: The parsed platform.
        :raises ValueError: If the format, OS or architecture is not supported.
        """
        parts = text.strip().split("/")
        if not parts[0] or len(parts) > 3 or any(not part for part in parts):
            raise ValueError(
                f"invalid platform {text!r}, expected os[/arch[/variant]]"
            )
        if parts[0] not in SUPPORTED_OS:
            raise ValueError(f"unsupported OS {parts[0]!r}")
        if len(parts) > 1 and parts[1] not in SUPPORTED_ARCHITECTURES:
            raise ValueError(f"unsupported architecture {parts[1]!r}")
        return cls(
            os=parts[0],
            architecture=parts[1] if len(parts) > 1 else None,
            variant=parts[2] if len(parts) > 2 else None,
        )

    def __str__(self) -> str:
        return "/".join(p for p in (self.os, self.architecture, self.variant) if p)

    def build_args(self) -> Dict[str, str]:
        """The automatic ``TARGET*`` build arguments for this platform."""
        return {
            "TARGETPLATFORM": str(self),
            "TARGETOS": self.os,
            "TARGETARCH": self.architecture or "",
            "TARGETVARIANT": self.variant or "",
        }


class BuildRequest(BaseModel):
    """
    What to build: supplied build arguments, an optional target stage (name
    or index) and an optional platform.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    build_args: Dict[str, str] = Field(default_factory=dict, alias="buildArgs")
    target_stage: Optional[str] = Field(default=None, alias="targetStage")
    platform: Optional[Platform] = None

    @field_validator("platform", mode="before")
    @classmethod
    def _parse_platform(cls, value):
        if isinstance(value, str):
            return Platform.parse(value)
        return value

    @field_validator("target_stage", mode="before")
    @classmethod
    def _stringify_target(cls, value):
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("build_args", mode="before")
    @classmethod
    def _stringify_args(cls, value):
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value
