"""Angle-axis and quaternion helpers for rotating 3D points."""

from __future__ import annotations

import math
import sys
from typing import Sequence

import numpy as np

_EPSILON = sys.float_info.epsilon


def _vec(values: Sequence[float], size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got shape {arr.shape}")
    return arr


def dot_product(x: Sequence[float], y: Sequence[float]) -> float:
    """Return the dot product of two 3-vectors."""
    a = _vec(x, 3, "x")
    b = _vec(y, 3, "y")
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross_product(x: Sequence[float], y: Sequence[float]) -> np.ndarray:
    """Return the cross product x × y of two 3-vectors."""
    a = _vec(x, 3, "x")
    b = _vec(y, 3, "y")
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ]
    )


def angle_axis_to_quaternion(angle_axis: Sequence[float]) -> np.ndarray:
    """Convert an angle-axis rotation to a quaternion ``[w, x, y, z]``."""
    aa = _vec(angle_axis, 3, "angle_axis")
    theta_squared = float(aa @ aa)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        half_theta = 0.5 * theta
        k = math.sin(half_theta) / theta
        w = math.cos(half_theta)
    else:
        k = 0.5
        w = 1.0
    return np.array([w, aa[0] * k, aa[1] * k, aa[2] * k])


def quaternion_to_angle_axis(quaternion: Sequence[float]) -> np.ndarray:
    """Convert a quaternion ``[w, x, y, z]`` to an angle-axis rotation."""
    q = _vec(quaternion, 4, "quaternion")
    vec = q[1:]
    sin_squared_theta = float(vec @ vec)
    if sin_squared_theta > _EPSILON:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = float(q[0])
        # Keep the resulting angle within [-pi, pi].
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return vec * k


def angle_axis_rotate_point(angle_axis: Sequence[float], pt: Sequence[float]) -> np.ndarray:
    """Rotate ``pt`` by the angle-axis rotation ``angle_axis``."""
    aa = _vec(angle_axis, 3, "angle_axis")
    p = _vec(pt, 3, "pt")
    theta2 = dot_product(aa, aa)
    if theta2 > _EPSILON:
        # Rodrigues' formula.
        theta = math.sqrt(theta2)
        costheta = math.cos(theta)
        sintheta = math.sin(theta)
        w = aa / theta
        w_cross_pt = cross_product(w, p)
        tmp = dot_product(w, p) * (1.0 - costheta)
        return p * costheta + w_cross_pt * sintheta + w * tmp
    # First-order approximation near zero: R * p = p + w x p.
    return p + cross_product(aa, p)