"""
Grid-based transport solver.

The map is a Knothe-Rosenblatt rearrangement: the x coordinate is transported by the cumulative
x-marginal of the density, the y coordinate by the cumulative conditional distribution of the
column. It is measure preserving (density -> uniform) but not the L2-optimal map; any solver
returning a `TransportMap` over the same grid can replace it.
"""
from __future__ import annotations

import logging
import time

import numpy as np

from causticlens.config import SolverOptions
from causticlens.exceptions import SolverError
from causticlens.transport.transport_map import TransportMap, grid_vertices

logger = logging.getLogger(__name__)


def normalize_density(density: np.ndarray) -> np.ndarray:
    """Check a density matrix and scale it into [0,1] when its maximum exceeds 1."""
    density = np.asarray(density, dtype=np.float64)
    if density.ndim != 2:
        raise SolverError(f"density must be a 2D matrix, got shape {density.shape}")
    if not np.all(np.isfinite(density)):
        raise SolverError("density contains non-finite values")
    if np.any(density < 0.0):
        raise SolverError("density must be non-negative")
    peak = float(density.max()) if density.size else 0.0
    if peak > 1.0:
        density = density / peak
    return density


def _cumulative(masses: np.ndarray, axis: int) -> np.ndarray:
    """Cumulative sums with a leading zero along `axis`."""
    c = np.cumsum(masses, axis=axis)
    pad = [(0, 0)] * masses.ndim
    pad[axis] = (1, 0)
    return np.pad(c, pad)


class GridTransportSolver:
    def __init__(self, resolution: int | None = None) -> None:
        self.resolution: int | None = None
        if resolution is not None:
            self.init(resolution)

    def init(self, resolution: int) -> None:
        if int(resolution) < 1:
            raise SolverError("solver resolution must be >= 1")
        self.resolution = int(resolution)
        self._origin = grid_vertices(self.resolution)

    def solve(self, density: np.ndarray, options: SolverOptions | None = None) -> TransportMap:
        """
        Compute the map sending `density` (rows = y cells, columns = x cells) to the uniform
        density on the unit square.
        """
        if options is None:
            options = SolverOptions()
        density = normalize_density(density)
        if self.resolution is None:
            self.init(density.shape[0])
        R = int(self.resolution)
        if density.shape != (R, R):
            raise SolverError(f"density shape {density.shape} does not match solver resolution {(R, R)}")

        t0 = time.perf_counter()
        rho = density + float(options.density_floor) * float(density.mean())
        total = float(rho.sum())
        if not total > 0.0:
            raise SolverError("density has no mass")

        col_mass = rho.sum(axis=0)  # (R,) per x cell
        cum_x = _cumulative(col_mass, axis=0)  # (R+1,)
        u = cum_x / cum_x[-1]

        # Conditional CDF of y at every vertex column, pooled over the two adjacent cell columns.
        cum_y = _cumulative(rho, axis=0)  # (R+1, R)
        left = np.concatenate([cum_y[:, :1], cum_y], axis=1)  # column i-1 (clamped)
        right = np.concatenate([cum_y, cum_y[:, -1:]], axis=1)  # column i (clamped)
        pooled = left + right  # (R+1, R+1)
        v = pooled / pooled[-1:, :]

        uu = np.broadcast_to(u[None, :], v.shape)
        forward = np.stack([uu.reshape(-1), v.reshape(-1)], axis=-1)
        if not np.all(np.isfinite(forward)):
            raise SolverError("transport solve produced non-finite positions")

        tmap = TransportMap(
            origin_mesh=self._origin.copy(),
            forward_mesh=forward,
            density=density,
            resolution=R,
        )
        logger.info(
            "STATS solver -- resolution: %d  solve: %.3fs  displacement rms: %.4g",
            R,
            time.perf_counter() - t0,
            tmap.displacement_rms(),
        )
        return tmap
