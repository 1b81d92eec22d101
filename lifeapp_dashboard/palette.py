"""Album-art colour palette: a centre-weighted average colour plus lighter and darker variants."""
from __future__ import annotations

import io
import logging

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_SIZE = 150
SAMPLE_TARGET = 500
LIGHT_DEFAULT = "rgb(241, 245, 249)"
DARK_DEFAULT = "rgb(0, 0, 0)"


def default_palette(dark: bool = False) -> dict:
    color = DARK_DEFAULT if dark else LIGHT_DEFAULT
    return {"primary": color, "secondary": color, "accent": color}


def _rgb(values) -> str:
    r, g, b = (int(v) for v in values)
    return f"rgb({r}, {g}, {b})"


def color_palette(image: Image.Image, dark: bool = False) -> dict:
    try:
        rgba = image.convert("RGBA")
        rgba.thumbnail((MAX_SIZE, MAX_SIZE))
        pixels = np.asarray(rgba, dtype=np.float64)
        height, width = pixels.shape[:2]
        flat = pixels.reshape(-1, 4)
        step = max(1, len(flat) // SAMPLE_TARGET)
        indices = np.arange(0, len(flat), step)
        samples = flat[indices]
        opaque = samples[:, 3] >= 125
        if not opaque.any():
            return default_palette(dark)

        xs = indices % width
        ys = indices // width
        cx, cy = width / 2, height / 2
        max_dist = np.hypot(cx, cy) or 1.0
        weights = 1 - (np.hypot(xs - cx, ys - cy) / max_dist) * 0.5
        weights = weights[opaque]
        rgb = samples[opaque, :3]
        primary = np.floor((rgb * weights[:, None]).sum(axis=0) / weights.sum())
    except (OSError, ValueError) as exc:
        logger.warning("Could not build colour palette: %s", exc)
        return default_palette(dark)

    return {
        "primary": _rgb(primary),
        "secondary": _rgb(np.minimum(255, np.floor(primary * 1.3))),
        "accent": _rgb(np.maximum(0, np.floor(primary * 0.6))),
    }


def color_palette_from_url(url: str, dark: bool = False, timeout: int = 3) -> dict:
    if not url:
        return default_palette(dark)
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        image = Image.open(io.BytesIO(response.content))
    except (requests.RequestException, UnidentifiedImageError, OSError) as exc:
        logger.warning("Could not load image %s: %s", url, exc)
        return default_palette(dark)
    return color_palette(image, dark=dark)


def dominant_color(url: str, dark: bool = False) -> str:
    return color_palette_from_url(url, dark=dark)["primary"]
