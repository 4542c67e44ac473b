"""
Target image for the evolution run.

The target is decoded once into a read-only RGBA array.  Colour statistics
(mode and mean colour) are derived lazily by a single scan and cached on the
instance; the normalisation constant for fitness is fixed at construction.
"""

from __future__ import annotations

import logging
import math
from typing import BinaryIO, Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from ga_errors import DecodeError

logger = logging.getLogger(__name__)

Color = tuple[int, int, int, int]

# Largest possible distance between two RGB colours
MAX_RGB_DISTANCE = math.sqrt(3 * 255.0 ** 2)
MAX_RGBA_DISTANCE = math.sqrt(4 * 255.0 ** 2)


class Target:
    """Immutable decoded raster the population is evolved toward.

    Attributes:
        width:       Image width in pixels.
        height:      Image height in pixels.
        pixels:      Read-only ``uint8`` array of shape (height, width, 4).
        max_fitness: Worst-case summed RGB distance, W * H * sqrt(3 * 255^2).
        name:        Optional label, usually the source file name.
    """

    def __init__(self, pixels: np.ndarray, name: str = "") -> None:
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise DecodeError(f"expected an RGBA array, got shape {pixels.shape}")
        if pixels.shape[0] < 1 or pixels.shape[1] < 1:
            raise DecodeError("target image is empty")

        self.pixels = np.array(pixels, dtype=np.uint8, order="C")
        self.pixels.setflags(write=False)
        self.height, self.width = self.pixels.shape[:2]
        self.name = name
        self.max_fitness = self.width * self.height * MAX_RGB_DISTANCE

        self._mode_color: Optional[Color] = None
        self._mean_color: Optional[Color] = None

        logger.info(
            "%s RGBA %dx%d (mf=%f)",
            name or "<target>", self.width, self.height, self.max_fitness,
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def load(
        cls,
        source: Union[str, BinaryIO],
        size: Optional[tuple[int, int]] = None,
    ) -> "Target":
        """Decode an image file into a target.

        Args:
            source: Path to the image file, or a binary file object.
            size:   Optional (width, height) to resize the image to.

        Returns:
            A new Target.

        Raises:
            DecodeError: If the file is missing, unreadable or not an image.
        """
        name = source if isinstance(source, str) else getattr(source, "name", "")
        try:
            with Image.open(source) as image:
                image.load()
                return cls.from_image(image, size=size, name=str(name))
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise DecodeError(f"cannot decode target image {name!r}: {exc}") from exc

    @classmethod
    def from_image(
        cls,
        image: Image.Image,
        size: Optional[tuple[int, int]] = None,
        name: str = "",
    ) -> "Target":
        """Build a target from an in-memory Pillow image."""
        if size is not None:
            image = image.resize(size)
        return cls(np.array(image.convert("RGBA")), name=name)

    @classmethod
    def from_array(cls, array: np.ndarray, name: str = "") -> "Target":
        """Build a target from a (H, W, 3) or (H, W, 4) array.

        RGB arrays get a fully opaque alpha channel.
        """
        array = np.asarray(array)
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise DecodeError(f"expected an RGB or RGBA array, got shape {array.shape}")
        if array.shape[2] == 3:
            alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
            array = np.concatenate((array.astype(np.uint8), alpha), axis=2)
        return cls(array.astype(np.uint8), name=name)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _calc_stats(self) -> None:
        flat = self.pixels.reshape(-1, 4)
        colors, counts = np.unique(flat, axis=0, return_counts=True)
        mode_idx = int(np.argmax(counts))
        self._mode_color = tuple(int(c) for c in colors[mode_idx])
        mean = flat.mean(axis=0, dtype=np.float64)
        self._mean_color = tuple(int(c) for c in mean)

        logger.info(
            "Colors => mean=%s, mode=%s with %d occurs",
            self._mean_color, self._mode_color, int(counts[mode_idx]),
        )

    def mode_color(self) -> Color:
        """Most common colour in the image (used as the canvas background)."""
        if self._mode_color is None:
            self._calc_stats()
        return self._mode_color

    def mean_color(self) -> Color:
        """Average colour, each channel averaged and truncated."""
        if self._mean_color is None:
            self._calc_stats()
        return self._mean_color

    def max_distance(self, score_alpha: bool = False) -> float:
        """Normaliser for the given scoring policy.

        RGB scoring uses ``max_fitness``; scoring alpha as well widens the
        per-pixel worst case to four channels so scores stay within [0, 100].
        """
        if score_alpha:
            return self.width * self.height * MAX_RGBA_DISTANCE
        return self.max_fitness

    @property
    def bounds(self) -> tuple[int, int]:
        """Largest valid (x, y) pixel coordinate."""
        return self.width - 1, self.height - 1

    def __repr__(self) -> str:
        return f"Target({self.name!r}, {self.width}x{self.height})"
