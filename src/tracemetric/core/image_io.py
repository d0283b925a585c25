from __future__ import annotations

from pathlib import Path

from PIL import Image


def read_image_size(path: str | Path) -> tuple[int, int]:
    """
    (width, height) of an image file in pixels.

    Only the header is decoded; the photograph itself stays with the caller.
    """
    with Image.open(Path(path)) as im:
        w, h = im.size
    return int(w), int(h)
