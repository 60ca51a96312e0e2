"""Service endpoints and default request parameters."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

REGISTRATION_URL_ENV = "MESHLINK_REGISTRATION_URL"
DEFORMATION_URL_ENV = "MESHLINK_DEFORMATION_URL"
CLEANING_URL_ENV = "MESHLINK_CLEANING_URL"
VOXEL_SIZE_ENV = "MESHLINK_VOXEL_SIZE"
DEFORMATION_RATIO_ENV = "MESHLINK_DEFORMATION_RATIO"
NUMBER_OF_MODES_ENV = "MESHLINK_NUMBER_OF_MODES"
TIMEOUT_ENV = "MESHLINK_REQUEST_TIMEOUT"
HEADLESS_ENV = "MESHLINK_HEADLESS"


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class ServiceSettings:
    registration_url: str = "http://localhost:8000/register"
    deformation_url: str = "http://localhost:8000/deform"
    cleaning_url: str = "http://localhost:8001/clean"
    voxel_size: float = 0.05
    deformation_ratio: float = 0.1
    number_of_modes: int = 5
    # None waits indefinitely
    timeout: Optional[float] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ServiceSettings":
        env = os.environ if env is None else env
        return cls(
            registration_url=env.get(REGISTRATION_URL_ENV) or cls.registration_url,
            deformation_url=env.get(DEFORMATION_URL_ENV) or cls.deformation_url,
            cleaning_url=env.get(CLEANING_URL_ENV) or cls.cleaning_url,
            voxel_size=_number(env, VOXEL_SIZE_ENV, cls.voxel_size, float),
            deformation_ratio=_number(env, DEFORMATION_RATIO_ENV, cls.deformation_ratio, float),
            number_of_modes=_number(env, NUMBER_OF_MODES_ENV, cls.number_of_modes, int),
            timeout=_number(env, TIMEOUT_ENV, None, float),
        )


def headless_requested(env: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if env is None else env
    return bool(env.get(HEADLESS_ENV))
