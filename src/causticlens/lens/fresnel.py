"""
Desired surface normals ("Fresnel mapping").

For every surface sample the normal is chosen so that the incoming ray is refracted (or
reflected) exactly towards the sample's assigned target point. With unit incident direction i,
unit transmitted direction t and index n of the lens material, the vector form of Snell's law
for a ray leaving the material gives a normal parallel to n*i - t; for a mirror the normal is
taken parallel to t + i.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

import numpy as np

from causticlens.config import OpticsConfig, RefinementOptions
from causticlens.core.geometry import normalize_rows
from causticlens.exceptions import ConfigurationError, DegenerateGeometryError


class LightModel(str, Enum):
    PARALLEL = "parallel"
    POINT_SOURCE = "point"


class SurfaceModel(str, Enum):
    REFRACTIVE = "refractive"
    REFLECTIVE = "reflective"


@dataclass(frozen=True)
class FresnelConfig:
    refractive_index: float = 1.55
    light_model: LightModel = LightModel.PARALLEL
    surface_model: SurfaceModel = SurfaceModel.REFRACTIVE
    light_position: tuple[float, float, float] = (0.5, 0.5, 0.5)
    light_direction: tuple[float, float, float] = (0.0, 0.0, -1.0)
    min_norm: float = 1e-12
    workers: int = 1

    @classmethod
    def from_options(cls, optics: OpticsConfig, refinement: RefinementOptions | None = None) -> "FresnelConfig":
        if refinement is None:
            refinement = RefinementOptions()
        return cls(
            refractive_index=float(optics.refractive_index),
            light_model=LightModel(optics.light_model),
            surface_model=SurfaceModel(optics.surface_model),
            light_position=tuple(float(c) for c in optics.light_position),
            light_direction=tuple(float(c) for c in optics.light_direction),
            min_norm=float(refinement.min_norm),
            workers=int(refinement.workers),
        )


def _normals_chunk(surface: np.ndarray, target: np.ndarray, config: FresnelConfig, offset: int) -> np.ndarray:
    try:
        transmitted = normalize_rows(target - surface, min_norm=config.min_norm, what="transmitted ray")
        if config.light_model == LightModel.POINT_SOURCE:
            light = np.asarray(config.light_position, dtype=np.float64).reshape(1, 3)
            incident = normalize_rows(surface - light, min_norm=config.min_norm, what="incident ray")
        else:
            d = normalize_rows(np.asarray(config.light_direction, dtype=np.float64).reshape(1, 3), min_norm=config.min_norm)
            incident = np.repeat(d, surface.shape[0], axis=0)
    except DegenerateGeometryError as e:
        # Report indices relative to the full sample set.
        raise e.shifted(offset) from e

    if config.surface_model == SurfaceModel.REFLECTIVE:
        normal = transmitted + incident
    else:
        normal = -(transmitted - incident * config.refractive_index)

    # The combination only vanishes when i and t are collinear: the ray goes on undeviated and
    # any normal along the ray satisfies the optical law.
    norms = np.linalg.norm(normal, axis=-1)
    straight = norms < config.min_norm
    if np.any(straight):
        normal[straight] = incident[straight]
        norms[straight] = 1.0
    return normal / norms[:, None]


def fresnel_normals(surface_points: np.ndarray, target_points: np.ndarray, config: FresnelConfig) -> np.ndarray:
    """
    Unit normal (N,3) per surface sample steering its ray towards `target_points`.

    Raises DegenerateGeometryError when a sample coincides with its target or with the point
    light; no NaN is ever returned.
    """
    surface = np.asarray(surface_points, dtype=np.float64).reshape(-1, 3)
    target = np.asarray(target_points, dtype=np.float64).reshape(-1, 3)
    if surface.shape != target.shape:
        raise ConfigurationError(f"surface {surface.shape} and target {target.shape} point sets differ in size")

    n = surface.shape[0]
    workers = max(1, int(config.workers))
    if workers == 1 or n < 2 * workers:
        return _normals_chunk(surface, target, config, 0)

    bounds = np.linspace(0, n, workers + 1).astype(int)
    with ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [
            ex.submit(_normals_chunk, surface[a:b], target[a:b], config, int(a))
            for a, b in zip(bounds[:-1], bounds[1:])
            if b > a
        ]
        parts = [f.result() for f in futures]
    return np.concatenate(parts, axis=0)
