from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from causticlens.core.mesh import GridMesh

logger = logging.getLogger(__name__)

DESIGN_SCHEMA = "causticlens.design.v0"


def _directed_boundary_edges(mesh: GridMesh) -> np.ndarray:
    """Boundary edges oriented as traversed by their (counter-clockwise) triangle."""
    tri = mesh.triangles
    directed = np.concatenate([tri[:, [0, 1]], tri[:, [1, 2]], tri[:, [2, 0]]], axis=0)
    n = np.int64(mesh.n_vertices)
    b = mesh.boundary_edges
    boundary_keys = b[:, 0] * n + b[:, 1]
    keys = np.minimum(directed[:, 0], directed[:, 1]) * n + np.maximum(directed[:, 0], directed[:, 1])
    return directed[np.isin(keys, boundary_keys)]


def save_solid_obj(mesh: GridMesh, path: Path, thickness: float) -> Path:
    """
    Write the height field as a closed solid: the freeform top surface, a flat base
    `thickness` below the lowest sample and side walls along the mesh boundary.
    """
    if thickness <= 0:
        raise ValueError("thickness must be > 0")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    top = np.asarray(mesh.source_points, dtype=np.float64)
    n = top.shape[0]
    bottom = top.copy()
    bottom[:, 2] = float(np.min(top[:, 2])) - float(thickness)

    tri = mesh.triangles
    walls = _directed_boundary_edges(mesh)
    a, b = walls[:, 0], walls[:, 1]
    side = np.concatenate([np.stack([a, a + n, b + n], axis=-1), np.stack([a, b + n, b], axis=-1)], axis=0)
    faces = np.concatenate([tri, tri[:, ::-1] + n, side], axis=0) + 1  # OBJ is 1-based

    lines = [f"# causticlens solid, {2 * n} vertices, {faces.shape[0]} faces"]
    lines.extend(f"v {x:.9f} {y:.9f} {z:.9f}" for x, y, z in np.concatenate([top, bottom], axis=0))
    lines.extend(f"f {i} {j} {k}" for i, j, k in faces)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.info("Wrote solid OBJ %s (%d faces)", path, faces.shape[0])
    return path


def _svg_header(width: float, height: float) -> list[str]:
    return [
        '<?xml version="1.0" encoding="UTF-8" ?>',
        f'<svg width="1000" height="{1000.0 * (height / width):.3f}" xmlns="http://www.w3.org/2000/svg" '
        'xmlns:xlink="http://www.w3.org/1999/xlink">',
        '<rect width="100%" height="100%" fill="white"/>',
    ]


def _svg_xy(p: np.ndarray, width: float, height: float) -> str:
    return f"{p[0] / width * 1000.0:.6f},{p[1] / height * 1000.0 * (height / width):.6f}"


def export_grid_svg(
    points: np.ndarray,
    path: Path,
    res_x: int,
    res_y: int,
    *,
    width: float = 1.0,
    height: float = 1.0,
    stroke_width: float = 0.5,
) -> Path:
    """Draw the row and column polylines of a row-major point grid (debug view of the mapping)."""
    points = np.asarray(points, dtype=np.float64)
    if points.shape[0] != res_x * res_y:
        raise ValueError("points do not match res_x*res_y")
    grid = points[:, :2].reshape(res_y, res_x, 2)
    lines = _svg_header(width, height)
    polylines = [grid[j, :, :] for j in range(res_y)] + [grid[:, i, :] for i in range(res_x)]
    for poly in polylines:
        d = "M" + "L".join(_svg_xy(p, width, height) for p in poly)
        lines.append(f'<path d="{d}" fill="none" stroke="black" stroke-width="{stroke_width}"/>')
    lines.append("</svg>")
    path = Path(path)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def export_triangles_svg(
    points: np.ndarray,
    triangles: np.ndarray,
    path: Path,
    *,
    width: float = 1.0,
    height: float = 1.0,
    stroke_width: float = 0.5,
) -> Path:
    points = np.asarray(points, dtype=np.float64)
    lines = _svg_header(width, height)
    for tri in np.asarray(triangles, dtype=np.int64):
        d = "M" + "L".join(_svg_xy(points[i], width, height) for i in tri) + "Z"
        lines.append(f'<path d="{d}" fill="none" stroke="black" stroke-width="{stroke_width}"/>')
    lines.append("</svg>")
    path = Path(path)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def save_design(out_dir: Path, design: Any) -> Path:
    """
    Save a finished design into a directory:

      design.json + arrays.npz

    The JSON holds run metadata and convergence history, the NPZ the arrays.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    arrays_path = out_dir / "arrays.npz"
    np.savez_compressed(
        arrays_path,
        surface_points=np.asarray(design.mesh.source_points, dtype=np.float64),
        target_points=np.asarray(design.target_points, dtype=np.float64),
        normals=np.asarray(design.result.normals, dtype=np.float64),
        triangles=np.asarray(design.mesh.triangles, dtype=np.int64),
    )

    cfg = design.config
    meta: dict[str, Any] = {
        "schema_version": DESIGN_SCHEMA,
        "grid": {"res_x": int(design.mesh.res_x), "res_y": int(design.mesh.res_y)},
        "inputs": {"source_path": str(cfg.source_path), "target_path": str(cfg.target_path)},
        "optics": {
            "refractive_index": float(cfg.optics.refractive_index),
            "focal_length": float(cfg.optics.focal_length),
            "light_model": cfg.optics.light_model,
            "surface_model": cfg.optics.surface_model,
        },
        "refinement": {
            "state": design.result.state.value,
            "rounds": int(design.result.rounds),
            "max_height_change": [float(v) for v in design.result.max_height_change],
            "normal_residual_deg": [float(v) for v in design.result.normal_residual_deg],
        },
        "arrays": {"format": "npz", "path": arrays_path.name},
    }
    json_path = out_dir / "design.json"
    json_path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return json_path


def load_design(out_dir: Path) -> tuple[dict[str, Any], dict[str, np.ndarray]]:
    out_dir = Path(out_dir)
    meta = json.loads((out_dir / "design.json").read_text(encoding="utf-8"))
    if str(meta.get("schema_version")) != DESIGN_SCHEMA:
        raise ValueError("unsupported design schema")
    with np.load(str(out_dir / str(meta["arrays"]["path"]))) as npz:
        arrays = {k: np.asarray(npz[k]) for k in npz.files}
    return meta, arrays
