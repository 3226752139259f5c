from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SplitAxisPolicy(Enum):
    # Always split on ``TLASBuildConfig.axis``.
    FIXED = "fixed"
    # One seeded random axis for the whole build.
    RANDOM_PER_BUILD = "random_per_build"
    # A fresh seeded random axis at every branch.
    RANDOM_PER_NODE = "random_per_node"
    # Axis with the widest spread of box centres in the current slice.
    LONGEST_EXTENT = "longest_extent"


@dataclass(frozen=True)
class TLASBuildConfig:
    axis_policy: SplitAxisPolicy = SplitAxisPolicy.LONGEST_EXTENT
    axis: int = 0
    seed: int = 0

    def __post_init__(self) -> None:
        if self.axis not in (0, 1, 2):
            raise ValueError(f"Split axis must be 0, 1 or 2, got {self.axis}.")
        if not isinstance(self.axis_policy, SplitAxisPolicy):
            object.__setattr__(self, "axis_policy", SplitAxisPolicy(str(self.axis_policy)))


@dataclass(frozen=True)
class BLASBuildConfig:
    # Worker threads for split finding and refit; 1 keeps the build sequential.
    workers: int = 1
    # Leaves handed to one worker at a time during the threaded refit.
    refit_chunk: int = 256

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError("BLASBuildConfig.workers must be >= 1.")
        if self.refit_chunk < 1:
            raise ValueError("BLASBuildConfig.refit_chunk must be >= 1.")


DEFAULT_TLAS_CONFIG = TLASBuildConfig()
DEFAULT_BLAS_CONFIG = BLASBuildConfig()
