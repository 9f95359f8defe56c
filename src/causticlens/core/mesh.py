from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from causticlens.core.geometry import normalize_rows


class GridMesh:
    """
    Rectangular triangulated grid over [0,width] x [0,height].

    Vertices are stored row-major (`idx = i + j*res_x`) in `source_points` (N,3); x and y are fixed
    at construction, only z is meant to change afterwards. Each grid cell is split into two
    counter-clockwise triangles (seen from +z).
    """

    def __init__(self, width: float, height: float, res_x: int, res_y: int) -> None:
        if res_x < 2 or res_y < 2:
            raise ValueError("grid resolution must be >= 2 in both directions")
        if width <= 0 or height <= 0:
            raise ValueError("width and height must be > 0")

        self.width = float(width)
        self.height = float(height)
        self.res_x = int(res_x)
        self.res_y = int(res_y)

        xs = np.linspace(0.0, self.width, self.res_x, dtype=np.float64)
        ys = np.linspace(0.0, self.height, self.res_y, dtype=np.float64)
        xx, yy = np.meshgrid(xs, ys)  # (res_y, res_x)
        self.source_points = np.stack(
            [xx.reshape(-1), yy.reshape(-1), np.zeros((self.res_x * self.res_y,), dtype=np.float64)], axis=-1
        )

        ii, jj = np.meshgrid(np.arange(self.res_x - 1), np.arange(self.res_y - 1))
        v0 = (ii + jj * self.res_x).reshape(-1)
        v1 = v0 + 1
        v2 = v0 + self.res_x
        v3 = v2 + 1
        lower = np.stack([v0, v1, v3], axis=-1)
        upper = np.stack([v0, v3, v2], axis=-1)
        self.triangles = np.stack([lower, upper], axis=1).reshape(-1, 3).astype(np.int64)

        self.vertex_triangles: list[list[int]] = []
        self._edges: np.ndarray | None = None
        self._edge_counts: np.ndarray | None = None
        self._laplacian: sp.csr_matrix | None = None
        self._boundary_mask: np.ndarray | None = None

    @property
    def n_vertices(self) -> int:
        return int(self.source_points.shape[0])

    @property
    def heights(self) -> np.ndarray:
        return self.source_points[:, 2]

    def build_vertex_to_triangles(self) -> list[list[int]]:
        adjacency: list[list[int]] = [[] for _ in range(self.n_vertices)]
        for t, tri in enumerate(self.triangles):
            for v in tri:
                adjacency[int(v)].append(t)
        self.vertex_triangles = adjacency
        self._boundary_mask = None
        return adjacency

    def _adjacency(self) -> list[list[int]]:
        if not self.vertex_triangles:
            self.build_vertex_to_triangles()
        return self.vertex_triangles

    def vertex_normals(self) -> np.ndarray:
        """Unit normals (N,3) of the current surface, area-weighted over each vertex fan (+z side)."""
        adjacency = self._adjacency()
        p = self.source_points
        tri = self.triangles
        face = np.cross(p[tri[:, 1]] - p[tri[:, 0]], p[tri[:, 2]] - p[tri[:, 0]])  # |face| = 2*area

        fan = np.concatenate([np.asarray(t, dtype=np.int64) for t in adjacency])
        starts = np.cumsum([0] + [len(t) for t in adjacency[:-1]])
        return normalize_rows(np.add.reduceat(face[fan], starts, axis=0), what="vertex normal")

    def _build_edges(self) -> None:
        e = np.concatenate(
            [self.triangles[:, [0, 1]], self.triangles[:, [1, 2]], self.triangles[:, [2, 0]]], axis=0
        )
        e = np.sort(e, axis=1)
        edges, counts = np.unique(e, axis=0, return_counts=True)
        self._edges = edges
        self._edge_counts = counts

    @property
    def edges(self) -> np.ndarray:
        """Unique undirected edges (E,2), smaller index first."""
        if self._edges is None:
            self._build_edges()
        return self._edges

    @property
    def boundary_edges(self) -> np.ndarray:
        """Edges used by exactly one triangle."""
        if self._edges is None:
            self._build_edges()
        return self._edges[self._edge_counts == 1]

    def is_boundary_vertex(self, vertex_index: int) -> bool:
        """
        A vertex is on the boundary when one of its edges is used by a single triangle of its fan.
        """
        v = int(vertex_index)
        fan = self.triangles[self._adjacency()[v]]
        neighbours = fan[fan != v]
        _, counts = np.unique(neighbours, return_counts=True)
        return bool(np.any(counts == 1))

    def boundary_vertex_mask(self) -> np.ndarray:
        if self._boundary_mask is None:
            self._boundary_mask = np.array([self.is_boundary_vertex(v) for v in range(self.n_vertices)], dtype=bool)
        return self._boundary_mask

    def edge_operator(self) -> sp.csr_matrix:
        """Signed incidence matrix D (E,N): (D z)[e] = z[b] - z[a] for edge e=(a,b)."""
        edges = self.edges
        n_e = edges.shape[0]
        rows = np.repeat(np.arange(n_e), 2)
        cols = edges.reshape(-1)
        vals = np.tile(np.array([-1.0, 1.0], dtype=np.float64), n_e)
        return sp.coo_matrix((vals, (rows, cols)), shape=(n_e, self.n_vertices)).tocsr()

    def calculate_vertex_laplacians(self) -> sp.csr_matrix:
        """Uniform graph Laplacian L = D^T D (degree on the diagonal, -1 per neighbour)."""
        D = self.edge_operator()
        self._laplacian = (D.T @ D).tocsr()
        return self._laplacian

    @property
    def laplacian(self) -> sp.csr_matrix:
        if self._laplacian is None:
            return self.calculate_vertex_laplacians()
        return self._laplacian

    def apply_margin(self, margin: float) -> None:
        """Shrink the xy sampling area so that a `margin` band stays free on every side."""
        m = float(margin)
        if not 0.0 <= m < 0.5 * min(self.width, self.height):
            raise ValueError(f"margin {m:g} leaves no sampling area on a {self.width:g}x{self.height:g} grid")
        self.source_points[:, 0] = self.source_points[:, 0] * (self.width - 2.0 * m) / self.width + m
        self.source_points[:, 1] = self.source_points[:, 1] * (self.height - 2.0 * m) / self.height + m

    def xy(self) -> np.ndarray:
        return self.source_points[:, :2].copy()
