from __future__ import annotations

from collections import Counter
from pathlib import Path

import numpy as np

from causticlens.api.export import export_grid_svg, export_triangles_svg, load_design, save_design, save_solid_obj
from causticlens.config import CausticConfig
from causticlens.core.mesh import GridMesh
from causticlens.api.pipeline import CausticDesign
from causticlens.lens.refinement import RefinementResult, RefinementState


def _read_obj(path: Path) -> tuple[np.ndarray, np.ndarray]:
    verts, faces = [], []
    for line in path.read_text(encoding="utf-8").splitlines():
        if line.startswith("v "):
            verts.append([float(v) for v in line.split()[1:]])
        elif line.startswith("f "):
            faces.append([int(v) for v in line.split()[1:]])
    return np.asarray(verts), np.asarray(faces)


def test_solid_obj_is_closed(tmp_path: Path) -> None:
    mesh = GridMesh(1.0, 1.0, 4, 4)
    mesh.source_points[:, 2] = -0.05 * mesh.source_points[:, 0]
    p = save_solid_obj(mesh, tmp_path / "sub" / "lens.obj", thickness=0.2)

    verts, faces = _read_obj(p)
    assert verts.shape == (32, 3)
    assert faces.shape == (60, 3)
    assert faces.min() == 1 and faces.max() == 32
    assert np.allclose(verts[16:, 2], -0.05 - 0.2)

    directed = Counter()
    for f in faces:
        for k in range(3):
            directed[(int(f[k]), int(f[(k + 1) % 3]))] += 1
    # Every directed edge appears once and is matched by its reverse.
    assert all(c == 1 for c in directed.values())
    assert all(directed[(b, a)] == 1 for a, b in directed)


def test_svg_exports(tmp_path: Path) -> None:
    mesh = GridMesh(2.0, 1.0, 3, 3)
    p = export_grid_svg(mesh.source_points, tmp_path / "grid.svg", 3, 3, width=2.0, height=1.0)
    text = p.read_text(encoding="utf-8")
    assert text.startswith("<?xml")
    assert text.count("<path") == 6
    q = export_triangles_svg(mesh.source_points, mesh.triangles, tmp_path / "tri.svg", width=2.0, height=1.0)
    assert q.read_text(encoding="utf-8").count("<path") == 8


def test_save_and_load_design(tmp_path: Path) -> None:
    mesh = GridMesh(1.0, 1.0, 3, 3)
    normals = np.tile([0.0, 0.0, -1.0], (9, 1))
    design = CausticDesign(
        mesh=mesh,
        target_points=mesh.source_points - np.array([0.0, 0.0, 1.0]),
        result=RefinementResult(RefinementState.TERMINATED, 2, [0.1, 0.01], normals),
        config=CausticConfig(source_path=Path("a.png"), target_path=Path("b.png"), resolution=3),
    )
    json_path = save_design(tmp_path / "design", design)
    assert json_path.name == "design.json"

    meta, arrays = load_design(tmp_path / "design")
    assert meta["refinement"]["state"] == "terminated"
    assert meta["refinement"]["max_height_change"] == [0.1, 0.01]
    assert meta["refinement"]["normal_residual_deg"] == []
    assert meta["grid"] == {"res_x": 3, "res_y": 3}
    assert np.array_equal(arrays["triangles"], mesh.triangles)
    assert np.allclose(arrays["normals"], normals)
