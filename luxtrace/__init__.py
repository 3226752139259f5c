"""
Luxtrace

Two-level bounding volume hierarchy for an offline ray tracer: a top-level
tree over scene instances and an LBVH per triangle mesh.
"""

__version__ = "0.1.0"
