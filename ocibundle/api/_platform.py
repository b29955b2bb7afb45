# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, Dict, Optional
from dataclasses import dataclass
import platform

from .._errors import InvalidOptionError

# maps python's machine names onto the architecture
# names used by the oci image specification
_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "armv7l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


@dataclass(frozen=True)
class Platform:
    """The os and architecture (and optional variant) of a bundle."""

    os: str
    architecture: str
    variant: Optional[str] = None

    def __str__(self) -> str:

        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)

    def to_dict(self) -> Dict[str, Any]:

        out = {"os": self.os, "architecture": self.architecture}
        if self.variant:
            out["variant"] = self.variant
        return out

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Platform":

        try:
            return Platform(
                os=str(data["os"]),
                architecture=str(data["architecture"]),
                variant=data.get("variant") or None,
            )
        except KeyError as e:
            raise InvalidOptionError(f"platform is missing field {e}") from e


def parse_platform(source: str) -> Platform:
    """Parse a platform string in the form os/arch or os/arch/variant."""

    parts = str(source).split("/")
    if len(parts) not in (2, 3) or not all(p.strip() for p in parts):
        raise InvalidOptionError(
            "expected platform in the form os/arch[/variant]",
            op="parse",
            ref=repr(source),
        )
    return Platform(*parts)


def host_platform() -> Platform:
    """Detect the platform of the current host."""

    machine = platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine, machine)
    variant = "v7" if machine == "armv7l" else None
    return Platform(os=platform.system().lower(), architecture=arch, variant=variant)
