from __future__ import annotations

import numpy as np

from causticlens.exceptions import DegenerateGeometryError


def normalize_rows(v: np.ndarray, *, min_norm: float = 1e-12, what: str = "vector") -> np.ndarray:
    """
    Normalize each row of `v` (shape (...,3)) to unit length.

    Rows shorter than `min_norm` raise DegenerateGeometryError instead of producing NaNs.
    """
    v = np.asarray(v, dtype=np.float64)
    norms = np.linalg.norm(v, axis=-1, keepdims=True)
    bad = ~(norms[..., 0] >= min_norm)
    if np.any(bad):
        idx = np.flatnonzero(bad.reshape(-1))
        raise DegenerateGeometryError(f"{what} has near-zero length", indices=idx)
    return v / norms


def refract(normal: np.ndarray, direction: np.ndarray, n1: float, n2: float) -> np.ndarray:
    """
    Vector form of Snell's law.

    `normal` must face the incoming ray (normal . direction < 0) and both inputs must be unit
    vectors, shape (3,) or (N,3). `n1` is the index of the medium the ray leaves, `n2` the one it
    enters. Raises DegenerateGeometryError on total internal reflection.
    """
    normal = np.asarray(normal, dtype=np.float64)
    direction = np.asarray(direction, dtype=np.float64)
    if normal.shape[-1] != 3 or direction.shape[-1] != 3:
        raise ValueError("vectors must have exactly three components")

    eta = float(n1) / float(n2)
    cos_i = -np.sum(normal * direction, axis=-1, keepdims=True)
    sin2_t = eta * eta * (1.0 - cos_i * cos_i)
    tir = sin2_t[..., 0] > 1.0
    if np.any(tir):
        raise DegenerateGeometryError(
            "total internal reflection", indices=np.flatnonzero(np.atleast_1d(tir).reshape(-1))
        )
    cos_t = np.sqrt(1.0 - sin2_t)
    return eta * direction + (eta * cos_i - cos_t) * normal


def reflect(normal: np.ndarray, direction: np.ndarray) -> np.ndarray:
    normal = np.asarray(normal, dtype=np.float64)
    direction = np.asarray(direction, dtype=np.float64)
    return direction - 2.0 * np.sum(direction * normal, axis=-1, keepdims=True) * normal


def rotation_matrix_xyz(angles_deg: tuple[float, float, float] | np.ndarray) -> np.ndarray:
    """
    Rotation applied about x, then y, then z (right-handed, angles in degrees).

    Returns R = Rz @ Ry @ Rx so that p' = R p.
    """
    ax, ay, az = np.deg2rad(np.asarray(angles_deg, dtype=np.float64).reshape(3))
    cx, sx = np.cos(ax), np.sin(ax)
    cy, sy = np.cos(ay), np.sin(ay)
    cz, sz = np.cos(az), np.sin(az)

    rot_x = np.array([[1.0, 0.0, 0.0], [0.0, cx, -sx], [0.0, sx, cx]], dtype=np.float64)
    rot_y = np.array([[cy, 0.0, sy], [0.0, 1.0, 0.0], [-sy, 0.0, cy]], dtype=np.float64)
    rot_z = np.array([[cz, -sz, 0.0], [sz, cz, 0.0], [0.0, 0.0, 1.0]], dtype=np.float64)
    return rot_z @ rot_y @ rot_x


def rotate_points(points: np.ndarray, angles_deg: tuple[float, float, float] | np.ndarray) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    R = rotation_matrix_xyz(angles_deg)
    return (R @ points.T).T


def translate_points(points: np.ndarray, offset: tuple[float, float, float] | np.ndarray) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return points + np.asarray(offset, dtype=np.float64).reshape(1, 3)


def scale_points(
    points: np.ndarray,
    scale: tuple[float, float, float] | np.ndarray,
    origin: tuple[float, float, float] | np.ndarray,
) -> np.ndarray:
    """Scale each coordinate relative to `origin`."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    o = np.asarray(origin, dtype=np.float64).reshape(1, 3)
    s = np.asarray(scale, dtype=np.float64).reshape(1, 3)
    return o + (points - o) * s


def place_target_points(
    points_2d: np.ndarray,
    *,
    focal_length: float,
    rotation_deg: tuple[float, float, float] = (0.0, 0.0, 0.0),
    translation: tuple[float, float, float] = (0.0, 0.0, 0.0),
    scale: tuple[float, float] = (1.0, 1.0),
    scale_origin: tuple[float, float] = (0.5, 0.5),
) -> np.ndarray:
    """
    Place corresponded image-plane points into the optical frame.

    Points are lifted to z=0, scaled about `scale_origin`, rotated x->y->z and finally moved by
    `translation` and by -focal_length along z, away from the surface. The result is read-only.
    """
    points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
    pts = np.concatenate([points_2d, np.zeros((points_2d.shape[0], 1), dtype=np.float64)], axis=1)

    if tuple(scale) != (1.0, 1.0):
        pts = scale_points(pts, (scale[0], scale[1], 1.0), (scale_origin[0], scale_origin[1], 0.0))
    pts = rotate_points(pts, rotation_deg)
    pts = translate_points(pts, translation)
    pts = translate_points(pts, (0.0, 0.0, -float(focal_length)))

    pts.flags.writeable = False
    return pts
