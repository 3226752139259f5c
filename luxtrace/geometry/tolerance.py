from __future__ import annotations

# Positional epsilon for near-zero distance/length checks.
EPS_POS = 1e-12

# Padding applied to a zero-thickness box axis so slab tests keep a non-empty interval.
EPS_BOX_PAD = 1e-4

# Determinant threshold for ray/triangle tests (parallel or degenerate triangles).
EPS_DET = 1e-6

# Default ray interval used by closest-hit queries.
RAY_TMIN = 1e-2
RAY_TMAX = 1e3
