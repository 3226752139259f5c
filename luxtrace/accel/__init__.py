from .blas import BottomLevelAccelerationStructure, BVHFlatNode, NodeIndex, build_blas
from .config import BLASBuildConfig, SplitAxisPolicy, TLASBuildConfig
from .refit import SENTINEL, refit_bounds
from .tlas import TLASNode, TLASNodeKind, TopLevelAccelerationStructure

__all__ = [
    "BLASBuildConfig",
    "BVHFlatNode",
    "BottomLevelAccelerationStructure",
    "NodeIndex",
    "SENTINEL",
    "SplitAxisPolicy",
    "TLASBuildConfig",
    "TLASNode",
    "TLASNodeKind",
    "TopLevelAccelerationStructure",
    "build_blas",
    "refit_bounds",
]
