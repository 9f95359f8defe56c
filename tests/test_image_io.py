from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from causticlens.core.image_io import load_density, load_gray_u8
from causticlens.exceptions import DensityLoadError


def _gradient(h: int, w: int) -> np.ndarray:
    return np.tile(np.linspace(0, 250, w), (h, 1)).astype(np.uint8)


@pytest.mark.parametrize("suffix, options", [(".png", {}), (".webp", {"lossless": True}), (".bmp", {})])
def test_density_is_read_losslessly_in_common_formats(tmp_path: Path, suffix: str, options: dict) -> None:
    arr = _gradient(12, 12)
    p = tmp_path / f"gradient{suffix}"
    Image.fromarray(arr).save(p, **options)

    d = load_density(p, 12)
    assert d.dtype == np.float64
    assert np.array_equal(d, arr.astype(np.float64))
    # Brightness grows left to right, as the transport solver expects per column.
    assert np.all(np.diff(d.sum(axis=0)) > 0)


def test_colour_image_is_reduced_to_luminance(tmp_path: Path) -> None:
    rgb = np.zeros((6, 6, 3), dtype=np.uint8)
    rgb[:, 3:, :] = 255
    p = tmp_path / "rgb.png"
    Image.fromarray(rgb).save(p)

    g = load_gray_u8(p)
    assert g.shape == (6, 6)
    assert g.dtype == np.uint8
    assert np.all(g[:, :3] == 0) and np.all(g[:, 3:] == 255)


def test_load_density_resamples_to_grid(tmp_path: Path) -> None:
    arr = np.zeros((40, 40), dtype=np.uint8)
    arr[:, 20:] = 200
    p = tmp_path / "half.png"
    Image.fromarray(arr).save(p)

    d = load_density(p, 10)
    assert d.shape == (10, 10)
    assert d.dtype == np.float64
    assert np.allclose(d[:, :5], 0.0)
    assert np.allclose(d[:, 5:], 200.0)
    assert load_density(p).shape == (40, 40)


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(DensityLoadError, match="Failed to load input"):
        load_density(tmp_path / "nope.png")


def test_corrupted_file_raises(tmp_path: Path) -> None:
    p = tmp_path / "broken.png"
    p.write_bytes(b"definitely not an image")
    with pytest.raises(DensityLoadError):
        load_gray_u8(p)
    # Still an OSError for callers that only know the builtin hierarchy.
    with pytest.raises(OSError):
        load_gray_u8(p)
