from __future__ import annotations

import logging

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import spsolve

from causticlens.core.mesh import GridMesh
from causticlens.exceptions import ConfigurationError, SolverError

logger = logging.getLogger(__name__)


class NormalIntegrator:
    """
    Least-squares height field from per-vertex normals.

    Along every mesh edge (a,b) the height difference is asked to match the slope implied by the
    two endpoint normals, z_b - z_a = 0.5*(g_a + g_b).(p_b - p_a) with g = (-nx/nz, -ny/nz).
    The constant mode is fixed by a small Tikhonov pull towards the current heights:

        (D^T D + lam I) z = D^T b + lam z_prev
    """

    def __init__(self, mesh: GridMesh | None = None, *, regularization: float = 1e-6, min_nz: float = 1e-6) -> None:
        if regularization <= 0.0:
            raise ConfigurationError("regularization must be > 0")
        self.regularization = float(regularization)
        self.min_nz = float(min_nz)
        self._D: sp.csr_matrix | None = None
        self._A: sp.csc_matrix | None = None
        self._n_vertices = 0
        self.last_residual_deg = float("nan")
        if mesh is not None:
            self.initialize(mesh)

    def initialize(self, mesh: GridMesh) -> None:
        D = mesh.edge_operator()
        lap = mesh.laplacian
        n = mesh.n_vertices
        self._D = D
        self._A = (lap + self.regularization * sp.identity(n, dtype=np.float64, format="csr")).tocsc()
        self._n_vertices = n
        logger.debug("normal integration initialized: %d vertices, %d edges", n, D.shape[0])

    def integrate(self, mesh: GridMesh, normals: np.ndarray) -> np.ndarray:
        """Replace the mesh heights by the best fit to `normals` (N,3) and return them."""
        if self._A is None or self._n_vertices != mesh.n_vertices:
            self.initialize(mesh)
        normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
        if normals.shape[0] != mesh.n_vertices:
            raise ConfigurationError(f"expected {mesh.n_vertices} normals, got {normals.shape[0]}")

        nz = normals[:, 2]
        steep = ~(np.abs(nz) >= self.min_nz)
        if np.any(steep):
            raise SolverError(f"{int(np.count_nonzero(steep))} normal(s) are perpendicular to the optical axis")
        grad = -normals[:, :2] / nz[:, None]

        edges = mesh.edges
        a, b = edges[:, 0], edges[:, 1]
        dxy = mesh.source_points[b, :2] - mesh.source_points[a, :2]
        rhs_edges = 0.5 * np.sum((grad[a] + grad[b]) * dxy, axis=1)

        z_prev = mesh.source_points[:, 2].copy()
        rhs = self._D.T @ rhs_edges + self.regularization * z_prev
        z = spsolve(self._A, rhs)
        z = np.asarray(z, dtype=np.float64).reshape(-1)
        if not np.all(np.isfinite(z)):
            raise SolverError("normal integration produced non-finite heights")

        mesh.source_points[:, 2] = z
        self.last_residual_deg = self.normal_residual_deg(mesh, normals)
        return z

    @staticmethod
    def normal_residual_deg(mesh: GridMesh, normals: np.ndarray) -> float:
        """
        Largest angle (degrees) between the requested normals and those of the integrated surface.

        Boundary vertices see only part of their fan and are left out unless nothing else remains.
        """
        wanted = normals / np.linalg.norm(normals, axis=1, keepdims=True)
        cos = np.abs(np.sum(mesh.vertex_normals() * wanted, axis=1))
        interior = ~mesh.boundary_vertex_mask()
        if np.any(interior):
            cos = cos[interior]
        return float(np.degrees(np.arccos(np.clip(cos.min(), 0.0, 1.0))))
