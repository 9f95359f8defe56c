from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from causticlens.exceptions import DensityLoadError


def load_gray_u8(path: str | Path) -> np.ndarray:
    """
    Load an image as grayscale uint8.

    OpenCV is tried first; Pillow handles the formats some OpenCV builds cannot decode.
    Raises DensityLoadError when neither backend can read the file.
    """
    p = Path(path)
    if not p.is_file():
        raise DensityLoadError(f"Failed to load input \"{p}\": no such file")

    img = cv2.imread(str(p), cv2.IMREAD_GRAYSCALE)
    if img is not None:
        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)
        return img

    try:
        with Image.open(p) as im:
            im = im.convert("L")
            arr = np.asarray(im, dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as e:
        raise DensityLoadError(f"Failed to load input \"{p}\": {e}") from e
    return arr


def load_density(path: str | Path, resolution: int | None = None) -> np.ndarray:
    """
    Load a density image as a float64 matrix (H,W) of raw grey values.

    With `resolution`, the image is area-resampled to (resolution, resolution) so that the
    transport solver works on the same grid as the lens mesh.
    """
    img = load_gray_u8(path).astype(np.float64)
    if img.size == 0:
        raise DensityLoadError(f"Failed to load input \"{path}\": empty image")
    if resolution is not None and img.shape != (resolution, resolution):
        img = cv2.resize(img, (int(resolution), int(resolution)), interpolation=cv2.INTER_AREA)
    return np.asarray(img, dtype=np.float64)
