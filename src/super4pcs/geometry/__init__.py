"""Geometry primitives: rigid transforms and closed-form alignment."""

from .procrustes import estimate_rigid_transform
from .segments import closest_points_on_segments
from .transforms import (
    RigidTransform,
    axis_angle_to_matrix,
    quaternion_to_matrix,
)
