"""Rotation helpers for marker and object poses.

Quaternions are ``(x, y, z, w)`` arrays, the scalar-last convention of
``scipy.spatial.transform.Rotation``.
"""

from typing import Optional

import numpy as np
from scipy.spatial.transform import Rotation


def quaternion_from_rodrigues(x: float, y: float, z: float) -> Optional[np.ndarray]:
    """
    Convert a detector rotation vector to a quaternion in the target frame.

    The detector reports rotations in the camera frame; X and Z are negated to
    match the target frame's handedness.

    Args:
        x, y, z: Rodrigues vector components (axis * angle, radians)

    Returns:
        (4,) quaternion, or None for a zero rotation vector
    """
    rot = np.array([-x, y, -z], dtype=np.float64)
    theta = float(np.linalg.norm(rot))
    if theta == 0.0:
        return None
    return Rotation.from_rotvec(rot).as_quat()


def basis_from_axes(right: np.ndarray, forward: np.ndarray) -> Optional[np.ndarray]:
    """
    Build an orthonormal basis from approximate right and forward axes.

    Columns are (right, up, forward) with up = forward x right. Right is kept
    as given (normalized), forward is re-derived so the basis is exact.

    Returns:
        3x3 rotation matrix, or None when the axes are zero or parallel
    """
    right = np.asarray(right, dtype=np.float64).reshape(3)
    forward = np.asarray(forward, dtype=np.float64).reshape(3)

    r_norm = np.linalg.norm(right)
    if r_norm == 0.0:
        return None
    r = right / r_norm

    up = np.cross(forward, r)
    u_norm = np.linalg.norm(up)
    if u_norm < 1e-12:
        return None
    u = up / u_norm

    f = np.cross(r, u)

    R = np.empty((3, 3))
    R[:, 0] = r
    R[:, 1] = u
    R[:, 2] = f
    return R


def quaternion_from_axes(right: np.ndarray, forward: np.ndarray) -> Optional[np.ndarray]:
    R = basis_from_axes(right, forward)
    if R is None:
        return None
    return Rotation.from_matrix(R).as_quat()


def rotate_vector(quaternion: np.ndarray, v: np.ndarray) -> np.ndarray:
    return Rotation.from_quat(quaternion).apply(np.asarray(v, dtype=np.float64))
