from __future__ import annotations


class AccelerationBuildError(ValueError):
    """Raised when an acceleration structure is built from invalid input (for example no primitives)."""
