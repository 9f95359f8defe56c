from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from causticlens.api.pipeline import design_caustic_lens, run_design
from causticlens.cli.main import main
from causticlens.config import parse_config
from causticlens.exceptions import DensityLoadError
from causticlens.lens.refinement import RefinementState
from causticlens.transport.solver import GridTransportSolver


def _write_gray(path: Path, arr: np.ndarray) -> Path:
    Image.fromarray(arr.astype(np.uint8)).save(path)
    return path


@pytest.mark.integration
def test_uniform_images_give_flat_lens(tmp_path: Path) -> None:
    grey = np.full((10, 10), 128, dtype=np.uint8)
    src = _write_gray(tmp_path / "src.png", grey)
    trg = _write_gray(tmp_path / "trg.png", grey)
    cfg = parse_config({"source_path": str(src), "target_path": str(trg), "resolution": 10})

    design = design_caustic_lens(cfg)
    assert design.result.state == RefinementState.TERMINATED
    assert design.result.rounds == 10
    assert np.max(np.abs(design.mesh.source_points[:, 2])) < 1e-9
    assert np.allclose(design.target_points[:, 2], -1.0)
    assert np.allclose(design.target_points[:, :2], design.mesh.source_points[:, :2], atol=1e-9)


@pytest.mark.integration
def test_bright_target_half_bends_light(tmp_path: Path) -> None:
    src = _write_gray(tmp_path / "src.png", np.full((16, 16), 200, dtype=np.uint8))
    arr = np.full((16, 16), 40, dtype=np.uint8)
    arr[:, 8:] = 255
    trg = _write_gray(tmp_path / "trg.png", arr)
    cfg = parse_config(
        {
            "source_path": str(src),
            "target_path": str(trg),
            "resolution": 16,
            "out_path": str(tmp_path / "lens.obj"),
            "export_svg": True,
            "export_design": str(tmp_path / "design"),
            "refinement": {"max_rounds": 3, "workers": 2},
        }
    )
    written = run_design(cfg)
    assert [p.name for p in written] == ["lens.obj", "lens_targets.svg", "design.json"]
    assert all(p.exists() for p in written)


def test_unreadable_input_fails_before_solving(tmp_path: Path, monkeypatch) -> None:
    def _no_solve(*args, **kwargs):
        raise AssertionError("solver must not run")

    monkeypatch.setattr(GridTransportSolver, "solve", _no_solve)
    good = _write_gray(tmp_path / "ok.png", np.full((8, 8), 100, dtype=np.uint8))
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"\x89PNG garbage")
    cfg = parse_config({"source_path": str(good), "target_path": str(bad), "resolution": 8})
    with pytest.raises(DensityLoadError):
        design_caustic_lens(cfg)


def test_cli_requires_inputs(tmp_path: Path) -> None:
    assert main(["design", "--out", str(tmp_path / "x.obj")]) == 2


def test_cli_reports_bad_images(tmp_path: Path) -> None:
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"nope")
    out = tmp_path / "x.obj"
    rc = main(["design", "--in-src", str(bad), "--in-trg", str(bad), "--out", str(out), "--res", "8"])
    assert rc == 1
    assert not out.exists()


@pytest.mark.integration
def test_cli_design_writes_obj(tmp_path: Path, capsys) -> None:
    src = _write_gray(tmp_path / "src.png", np.full((8, 8), 90, dtype=np.uint8))
    trg = _write_gray(tmp_path / "trg.png", np.tile(np.linspace(30, 250, 8), (8, 1)))
    out = tmp_path / "lens.obj"
    rc = main(
        [
            "design",
            "--in-src", str(src),
            "--in-trg", str(trg),
            "--res", "8",
            "--rounds", "2",
            "--focal-l", "2.0",
            "--out", str(out),
        ]
    )
    assert rc == 0
    assert out.exists()
    assert f"Wrote {out}" in capsys.readouterr().out


@pytest.mark.parametrize(
    "data",
    [
        {"source_path": "a.png", "target_path": "b.png", "resolution": "abc"},
        {"source_path": "a.png", "target_path": "b.png", "optics": None},
        {"source_path": "a.png", "target_path": "b.png", "refinement": "fast"},
        {"source_path": "a.png", "target_path": "b.png", "resolution": 2},
    ],
)
def test_cli_rejects_malformed_config(tmp_path: Path, data) -> None:
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps(data), encoding="utf-8")
    out = tmp_path / "x.obj"
    assert main(["design", "--config", str(cfg), "--out", str(out)]) == 2
    assert not out.exists()


def test_cli_rejects_unreadable_config(tmp_path: Path) -> None:
    cfg = tmp_path / "cfg.json"
    cfg.write_bytes(b"\xff\xfe\x00{")
    assert main(["design", "--config", str(cfg)]) == 2
    assert main(["design", "--config", str(tmp_path)]) == 2
