"""Bundle-adjustment-in-the-large problems: loading, writing, normalising and perturbing."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Iterator, TypeVar

import numpy as np

from balbundle.noise import NoiseSource
from balbundle.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)

_T = TypeVar("_T")

_ANGLE_AXIS_CAMERA_SIZE = 9
_QUATERNION_CAMERA_SIZE = 10
_POINT_SIZE = 3


class BALFormatError(ValueError):
    """Raised when BAL problem data cannot be parsed."""


def median(data: Iterable[float]) -> float:
    """Return the element at position ``n // 2`` of the sorted values."""
    values = sorted(float(v) for v in data)
    if not values:
        raise ValueError("median of empty data")
    return values[len(values) // 2]


class _TokenReader:
    def __init__(self, text: str) -> None:
        self._tokens: Iterator[str] = iter(text.split())

    def take(self, convert: Callable[[str], _T], what: str) -> _T:
        try:
            token = next(self._tokens)
        except StopIteration:
            raise BALFormatError(f"unexpected end of data while reading {what}") from None
        try:
            return convert(token)
        except ValueError:
            raise BALFormatError(f"invalid {what}: {token!r}") from None


class BALProblem:
    """Cameras, points and observations of a bundle adjustment problem.

    Camera blocks hold the rotation (angle-axis, or a quaternion when
    ``use_quaternions`` is set), the translation, the focal length and two
    radial distortion coefficients. All parameters live in one flat array,
    cameras first, and ``cameras``/``points`` are writable views of it.
    """

    def __init__(
        self,
        num_cameras: int,
        num_points: int,
        camera_index: Iterable[int],
        point_index: Iterable[int],
        observations: Iterable[float],
        parameters: Iterable[float],
        use_quaternions: bool = False,
    ) -> None:
        if num_cameras < 0 or num_points < 0:
            raise BALFormatError("camera and point counts must not be negative")
        self.use_quaternions = use_quaternions
        self._num_cameras = int(num_cameras)
        self._num_points = int(num_points)
        self.camera_index = np.asarray(camera_index, dtype=int).reshape(-1)
        self.point_index = np.asarray(point_index, dtype=int).reshape(-1)
        self.observations = np.asarray(observations, dtype=float).reshape(-1, 2)
        self.parameters = np.array(parameters, dtype=float).reshape(-1)

        n_obs = len(self.camera_index)
        if len(self.point_index) != n_obs or len(self.observations) != n_obs:
            raise BALFormatError("observation arrays differ in length")
        if self.parameters.size != self.num_parameters:
            raise BALFormatError(
                f"expected {self.num_parameters} parameters, got {self.parameters.size}"
            )
        if n_obs and (
            self.camera_index.min() < 0
            or self.camera_index.max() >= self._num_cameras
            or self.point_index.min() < 0
            or self.point_index.max() >= self._num_points
        ):
            raise BALFormatError("observation refers to a missing camera or point")

    @classmethod
    def from_text(cls, text: str, use_quaternions: bool = False) -> "BALProblem":
        """Parse a problem in BAL text format."""
        reader = _TokenReader(text)
        num_cameras = reader.take(int, "camera count")
        num_points = reader.take(int, "point count")
        num_observations = reader.take(int, "observation count")
        if num_cameras < 0 or num_points < 0 or num_observations < 0:
            raise BALFormatError("counts in the header must not be negative")

        camera_index: list[int] = []
        point_index: list[int] = []
        observations: list[float] = []
        for _ in range(num_observations):
            camera_index.append(reader.take(int, "camera index"))
            point_index.append(reader.take(int, "point index"))
            observations.append(reader.take(float, "observation"))
            observations.append(reader.take(float, "observation"))

        count = _ANGLE_AXIS_CAMERA_SIZE * num_cameras + _POINT_SIZE * num_points
        parameters = np.array([reader.take(float, "parameter") for _ in range(count)])

        if use_quaternions:
            split = _ANGLE_AXIS_CAMERA_SIZE * num_cameras
            cameras = parameters[:split].reshape(num_cameras, _ANGLE_AXIS_CAMERA_SIZE)
            blocks = [
                np.concatenate([angle_axis_to_quaternion(camera[:3]), camera[3:]])
                for camera in cameras
            ]
            parameters = np.concatenate([*blocks, parameters[split:]])

        return cls(
            num_cameras,
            num_points,
            camera_index,
            point_index,
            observations,
            parameters,
            use_quaternions,
        )

    @classmethod
    def from_file(cls, filename: str | Path, use_quaternions: bool = False) -> "BALProblem":
        """Load a problem from a BAL text file."""
        return cls.from_text(Path(filename).read_text(), use_quaternions)

    @property
    def camera_block_size(self) -> int:
        return _QUATERNION_CAMERA_SIZE if self.use_quaternions else _ANGLE_AXIS_CAMERA_SIZE

    @property
    def point_block_size(self) -> int:
        return _POINT_SIZE

    @property
    def num_cameras(self) -> int:
        return self._num_cameras

    @property
    def num_points(self) -> int:
        return self._num_points

    @property
    def num_observations(self) -> int:
        return len(self.camera_index)

    @property
    def num_parameters(self) -> int:
        return self.camera_block_size * self._num_cameras + _POINT_SIZE * self._num_points

    @property
    def cameras(self) -> np.ndarray:
        """Writable view of the camera blocks, one row per camera."""
        end = self.camera_block_size * self._num_cameras
        return self.parameters[:end].reshape(self._num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """Writable view of the 3D points, one row per point."""
        start = self.camera_block_size * self._num_cameras
        return self.parameters[start:].reshape(self._num_points, _POINT_SIZE)

    def camera_for_observation(self, i: int) -> np.ndarray:
        """Writable view of the camera seen in observation ``i``."""
        return self.cameras[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        """Writable view of the point seen in observation ``i``."""
        return self.points[self.point_index[i]]

    def camera_to_angle_axis_and_center(
        self, camera: Iterable[float]
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return the angle-axis rotation and the optical centre ``c = -R't`` of a camera."""
        cam = np.asarray(camera, dtype=float)
        size = self.camera_block_size
        if cam.shape != (size,):
            raise ValueError(f"camera must have {size} elements, got shape {cam.shape}")
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(cam[:4])
        else:
            angle_axis = cam[:3].copy()
        translation = cam[size - 6 : size - 3]
        center = -angle_axis_rotate_point(-angle_axis, translation)
        return angle_axis, center

    def angle_axis_and_center_to_camera(
        self, angle_axis: Iterable[float], center: Iterable[float]
    ) -> np.ndarray:
        """Return the rotation and translation ``t = -R c`` of a camera block.

        The result holds the first ``camera_block_size - 3`` entries of a
        camera; the intrinsics are left to the caller.
        """
        aa = np.asarray(angle_axis, dtype=float)
        rotation = angle_axis_to_quaternion(aa) if self.use_quaternions else aa.copy()
        translation = -angle_axis_rotate_point(aa, center)
        return np.concatenate([rotation, translation])

    def _angle_axis_cameras(self) -> Iterator[np.ndarray]:
        for camera in self.cameras:
            if self.use_quaternions:
                yield np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:]])
            else:
                yield camera

    def write_to_file(self, filename: str | Path) -> None:
        """Write the problem in BAL text format with angle-axis cameras."""
        lines = [
            # The camera count is written twice in the header.
            f"{self._num_cameras} {self._num_cameras} {self._num_points} "
            f"{self.num_observations}"
        ]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{int(cam)} {int(pt)} {float(x):g} {float(y):g}")
        for camera in self._angle_axis_cameras():
            lines.extend(f"{float(v):.16g}" for v in camera)
        for point in self.points:
            lines.extend(f"{float(v):.16g}" for v in point)
        Path(filename).write_text("\n".join(lines) + "\n")

    def write_to_ply_file(self, filename: str | Path) -> None:
        """Write camera centres (green) and points (white) as an ASCII PLY file."""
        lines = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self._num_cameras + self._num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        for camera in self.cameras:
            _, center = self.camera_to_angle_axis_and_center(camera)
            cx, cy, cz = (float(v) for v in center)
            lines.append(f"{cx:g} {cy:g} {cz:g}0 255 0")
        for point in self.points:
            lines.append("".join(f"{float(v):g} " for v in point) + "255 255 255")
        Path(filename).write_text("\n".join(lines) + "\n")

    def normalize(self) -> None:
        """Centre the points on their median and scale their median L1 deviation to 100."""
        points = self.points
        med = np.array([median(points[:, axis]) for axis in range(_POINT_SIZE)])
        deviation = median(np.abs(points - med).sum(axis=1))
        if deviation == 0.0:
            raise ValueError("points have zero median absolute deviation")
        scale = 100.0 / deviation

        points[:] = scale * (points - med)

        extrinsic_size = self.camera_block_size - 3
        for camera in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            camera[:extrinsic_size] = self.angle_axis_and_center_to_camera(
                angle_axis, scale * (center - med)
            )

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        noise: NoiseSource,
    ) -> None:
        """Add Gaussian noise to points, camera rotations and camera translations."""
        for name, sigma in (
            ("point_sigma", point_sigma),
            ("rotation_sigma", rotation_sigma),
            ("translation_sigma", translation_sigma),
        ):
            if sigma < 0.0:
                raise ValueError(f"{name} must not be negative")

        if point_sigma > 0.0:
            for point in self.points:
                point[:] = noise.perturb_point3(point_sigma, point)

        size = self.camera_block_size
        for camera in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = noise.perturb_point3(rotation_sigma, angle_axis)
            camera[: size - 3] = self.angle_axis_and_center_to_camera(angle_axis, center)
            if translation_sigma > 0.0:
                camera[size - 6 : size - 3] = noise.perturb_point3(
                    translation_sigma, camera[size - 6 : size - 3]
                )