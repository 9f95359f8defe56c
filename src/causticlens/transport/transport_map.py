from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


def grid_vertices(resolution: int) -> np.ndarray:
    """Vertices (V,2) of a regular (R+1)x(R+1) grid over the unit square, row-major."""
    t = np.linspace(0.0, 1.0, int(resolution) + 1, dtype=np.float64)
    xx, yy = np.meshgrid(t, t)
    return np.stack([xx.reshape(-1), yy.reshape(-1)], axis=-1)


class _PiecewiseLinear:
    """Piecewise-linear interpolation of vertex values over a Delaunay triangulation."""

    def __init__(self, vertices: np.ndarray, values: np.ndarray) -> None:
        from scipy.interpolate import LinearNDInterpolator, NearestNDInterpolator  # type: ignore

        self._linear = LinearNDInterpolator(vertices, values)
        self._nearest = NearestNDInterpolator(vertices, values)

    def __call__(self, points: np.ndarray) -> np.ndarray:
        out = np.asarray(self._linear(points), dtype=np.float64).reshape(-1, 2)
        outside = ~np.all(np.isfinite(out), axis=1)
        if np.any(outside):
            # Outside the convex hull of the mesh.
            out[outside] = np.asarray(self._nearest(points[outside]), dtype=np.float64).reshape(-1, 2)
        return out


@dataclass
class TransportMap:
    """
    Discrete transport map between two meshes with the same connectivity.

    Vertex k of `origin_mesh` (image domain, carrying `density`) is sent to vertex k of
    `forward_mesh` (uniform transported domain). `apply_forward` evaluates origin -> forward and
    `apply_inverse` forward -> origin, piecewise linearly in between.
    """

    origin_mesh: np.ndarray  # (V,2)
    forward_mesh: np.ndarray  # (V,2)
    density: np.ndarray  # (R,R)
    resolution: int
    _fwd: _PiecewiseLinear | None = field(default=None, init=False, repr=False)
    _inv: _PiecewiseLinear | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.origin_mesh = np.asarray(self.origin_mesh, dtype=np.float64).reshape(-1, 2)
        self.forward_mesh = np.asarray(self.forward_mesh, dtype=np.float64).reshape(-1, 2)
        self.density = np.asarray(self.density, dtype=np.float64)
        if self.origin_mesh.shape != self.forward_mesh.shape:
            raise ValueError("origin_mesh and forward_mesh must have the same shape")
        if not np.all(np.isfinite(self.forward_mesh)):
            raise ValueError("forward_mesh contains non-finite values")

    @classmethod
    def identity(cls, resolution: int) -> "TransportMap":
        v = grid_vertices(resolution)
        return cls(
            origin_mesh=v,
            forward_mesh=v.copy(),
            density=np.ones((int(resolution), int(resolution)), dtype=np.float64),
            resolution=int(resolution),
        )

    def apply_forward(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if self._fwd is None:
            self._fwd = _PiecewiseLinear(self.origin_mesh, self.forward_mesh)
        return self._fwd(points)

    def apply_inverse(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if self._inv is None:
            self._inv = _PiecewiseLinear(self.forward_mesh, self.origin_mesh)
        return self._inv(points)

    def displacement_rms(self) -> float:
        d = self.forward_mesh - self.origin_mesh
        return float(np.sqrt(np.mean(np.sum(d * d, axis=1))))
