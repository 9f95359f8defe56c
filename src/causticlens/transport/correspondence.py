from __future__ import annotations

import numpy as np

from causticlens.exceptions import ConfigurationError
from causticlens.transport.transport_map import TransportMap


def _check_compatible(source_map: TransportMap, target_map: TransportMap, target_density: np.ndarray) -> None:
    if source_map.resolution != target_map.resolution:
        raise ConfigurationError(
            f"source map resolution {source_map.resolution} != target map resolution {target_map.resolution}"
        )
    if source_map.origin_mesh.shape != target_map.origin_mesh.shape:
        raise ConfigurationError("source and target maps must be solved over the same grid")
    r = int(target_map.resolution)
    if np.asarray(target_density).shape != (r, r):
        raise ConfigurationError(f"target density shape {np.asarray(target_density).shape} != {(r, r)}")


def compose_transport_maps(
    source_map: TransportMap, target_map: TransportMap, target_density: np.ndarray
) -> TransportMap:
    """
    Chain the two maps: source image domain -> uniform domain -> target image domain.

    The source map's forward mesh is pulled back through the target map's inverse, giving a
    map whose origin is the source grid and whose forward mesh lies in the target image plane.
    """
    _check_compatible(source_map, target_map, target_density)
    moved = target_map.apply_inverse(source_map.forward_mesh)
    return TransportMap(
        origin_mesh=source_map.origin_mesh.copy(),
        forward_mesh=moved,
        density=np.asarray(target_density, dtype=np.float64),
        resolution=int(target_map.resolution),
    )


def apply_transport_mapping(
    source_map: TransportMap,
    target_map: TransportMap,
    target_density: np.ndarray,
    points: np.ndarray,
) -> np.ndarray:
    """
    Return, for each 2D sample in `points` (N,2), where its light should land on the target
    image plane. The input array is left untouched.
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 2:
        raise ConfigurationError(f"points must have shape (N,2), got {points.shape}")
    composed = compose_transport_maps(source_map, target_map, target_density)
    return composed.apply_forward(points)
