from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from causticlens.core.mesh import GridMesh
from causticlens.exceptions import ConfigurationError
from causticlens.lens.fresnel import FresnelConfig, fresnel_normals
from causticlens.lens.integration import NormalIntegrator

logger = logging.getLogger(__name__)


class RefinementState(str, Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    TERMINATED = "terminated"


@dataclass
class RefinementResult:
    state: RefinementState
    rounds: int
    max_height_change: list[float] = field(default_factory=list)
    normals: np.ndarray | None = None
    # Per round: worst angle between requested and integrated normals.
    normal_residual_deg: list[float] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.state == RefinementState.CONVERGED


def reanchor_heights(points: np.ndarray) -> float:
    """
    Shift z so that the highest sample sits at z=0 (in place). Returns the removed offset.

    Only relative heights matter optically; this keeps the surface from drifting.
    """
    z_max = float(np.max(points[:, 2]))
    points[:, 2] -= z_max
    return z_max


class SurfaceRefiner:
    """
    Fixed-point iteration between desired normals and an integrable height field.

    Each round: re-anchor heights, compute the normals that send every sample's ray to its
    target, integrate them into new heights. Stops after `max_rounds`, or earlier once the
    largest height change of a round drops below `tolerance` (when tolerance > 0).
    """

    def __init__(
        self,
        mesh: GridMesh,
        target_points: np.ndarray,
        fresnel: FresnelConfig,
        integrator: NormalIntegrator | None = None,
        *,
        max_rounds: int = 10,
        tolerance: float = 0.0,
    ) -> None:
        target_points = np.asarray(target_points, dtype=np.float64)
        if target_points.shape != (mesh.n_vertices, 3):
            raise ConfigurationError(
                f"target points must have shape {(mesh.n_vertices, 3)}, got {target_points.shape}"
            )
        if int(max_rounds) < 1:
            raise ConfigurationError("max_rounds must be >= 1")
        if float(tolerance) < 0.0:
            raise ConfigurationError("tolerance must be >= 0")

        self.mesh = mesh
        self.target_points = target_points
        self.fresnel = fresnel
        self.integrator = integrator if integrator is not None else NormalIntegrator(mesh)
        self.max_rounds = int(max_rounds)
        self.tolerance = float(tolerance)
        self.state = RefinementState.INITIALIZING

    def step(self) -> tuple[np.ndarray, float]:
        """Run one round; returns (normals, max |dz|)."""
        points = self.mesh.source_points
        reanchor_heights(points)
        z_before = self.mesh.heights.copy()
        normals = fresnel_normals(points, self.target_points, self.fresnel)
        z_after = self.integrator.integrate(self.mesh, normals)
        return normals, float(np.max(np.abs(z_after - z_before)))

    def run(self) -> RefinementResult:
        self.state = RefinementState.ITERATING
        history: list[float] = []
        residuals: list[float] = []
        normals = None
        for k in range(self.max_rounds):
            normals, dz = self.step()
            history.append(dz)
            residuals.append(self.integrator.last_residual_deg)
            logger.info(
                "round %d/%d: max height change %.3e, normal residual %.3f deg",
                k + 1,
                self.max_rounds,
                dz,
                residuals[-1],
            )
            if self.tolerance > 0.0 and dz < self.tolerance:
                self.state = RefinementState.CONVERGED
                break
        else:
            self.state = RefinementState.TERMINATED

        reanchor_heights(self.mesh.source_points)
        return RefinementResult(
            state=self.state,
            rounds=len(history),
            max_height_change=history,
            normal_residual_deg=residuals,
            normals=normals,
        )
