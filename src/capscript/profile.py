"""
Sandbox profiles: resource budgets and capability flags for one run.

Profiles are immutable pydantic models. They can be built in code, from a
plain mapping, or from a YAML file:

    max_stack_depth: 64
    max_time_ms: 500
    capabilities:
      io: true
"""

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ProfileError

logger = logging.getLogger(__name__)

__all__ = [
    "CAPABILITY_NAMES",
    "Capabilities",
    "Profile",
    "load_profile",
    "profile_from_mapping",
]


CAPABILITY_NAMES = ("io", "network", "filesystem", "deferred_execution")


class Capabilities(BaseModel):
    """Effect permissions. Every capability is denied unless enabled."""
    io: bool = False
    network: bool = False
    filesystem: bool = False
    deferred_execution: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    def enabled(self) -> tuple:
        """Names of the capabilities that are switched on."""
        return tuple(name for name in CAPABILITY_NAMES if getattr(self, name))


class Profile(BaseModel):
    """Budgets and capabilities consulted by the evaluator.

    A budget of ``None`` is unlimited.
    """
    max_stack_depth: Optional[int] = Field(default=None, ge=0)
    max_heap_size: Optional[int] = Field(default=None, ge=0)
    max_time_ms: Optional[int] = Field(default=None, ge=0)
    capabilities: Capabilities = Field(default_factory=Capabilities)

    model_config = ConfigDict(frozen=True, extra="forbid")

    def allows(self, capability: str) -> bool:
        """Check whether a capability flag is enabled."""
        if capability not in CAPABILITY_NAMES:
            raise ProfileError(f"unknown capability '{capability}'")
        return getattr(self.capabilities, capability)

    def with_overrides(
        self,
        allow: Iterable[str] = (),
        **budgets: Optional[int],
    ) -> "Profile":
        """
        Return a copy with extra capabilities enabled and budgets replaced.

        Budgets passed as ``None`` keep the current value.
        """
        data = self.model_dump()
        for name, value in budgets.items():
            if value is not None:
                data[name] = value
        for capability in allow:
            data["capabilities"][capability] = True
        return profile_from_mapping(data)


def profile_from_mapping(data: Optional[Mapping[str, Any]]) -> Profile:
    """
    Build a Profile from a plain mapping.

    Raises:
        ProfileError: If the mapping has unknown keys or invalid values
    """
    if data is None:
        return Profile()
    if not isinstance(data, Mapping):
        raise ProfileError(f"expected a mapping at profile root, got {type(data).__name__}")
    try:
        return Profile.model_validate(dict(data))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ProfileError(f"invalid profile: {problems}") from e


def load_profile(path: Union[str, Path]) -> Profile:
    """
    Load a Profile from a YAML file.

    An empty file yields the default (fully restricted, unlimited) profile.

    Raises:
        ProfileError: If the file cannot be read, is not valid YAML, or
            does not describe a valid profile
    """
    profile_path = Path(path)
    try:
        with profile_path.open("r", encoding="utf-8") as fp:
            data = yaml.safe_load(fp)
    except OSError as e:
        raise ProfileError(f"cannot read profile {profile_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ProfileError(f"YAML parse error in {profile_path}: {e}") from e

    profile = profile_from_mapping(data)
    logger.debug("loaded profile from %s: %s", profile_path, profile)
    return profile
