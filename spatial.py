# spatial.py
"""Small geometry helpers shared by the solver and the robot adapter."""

import numpy as np
from scipy.spatial.transform import Rotation as R


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix: skew(a) @ b == np.cross(a, b)."""
    x, y, z = np.asarray(v, dtype=float).reshape(3)
    return np.array([
        [0.0, -z, y],
        [z, 0.0, -x],
        [-y, x, 0.0],
    ])


def rotation(H: np.ndarray) -> np.ndarray:
    return H[:3, :3]


def transform_point(H: np.ndarray, p: np.ndarray) -> np.ndarray:
    """Apply a 4x4 homogeneous transform to a 3-D point."""
    return (H @ np.append(p, 1.0))[:3]


def transform_from_rpy(position, rpy) -> np.ndarray:
    """Build a 4x4 transform from a position and roll-pitch-yaw angles."""
    H = np.eye(4)
    H[:3, :3] = R.from_euler('xyz', rpy, degrees=False).as_matrix()
    H[:3, 3] = position
    return H
