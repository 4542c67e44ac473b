"""
Genes: the heritable visual primitives of a genome.

A gene is a frozen value record holding geometry and one RGBA colour.  Two
primitive kinds exist, polygons and axis-aligned rectangles; a run uses one
of them.  Genes are never modified in place: mutation returns a new gene.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from ga_errors import InvariantViolation
from ga_target import Color, Target


class GeneKind(enum.Enum):
    """Primitive kind painted by a gene; one kind is active per run."""

    POLYGON = "polygon"
    RECTANGLE = "rectangle"


# ---------------------------------------------------------------------------
# Bounded Gaussian perturbation
# ---------------------------------------------------------------------------

def mutate_norm(
    value: int, stddev: float, low: int, high: int, rng: np.random.Generator
) -> int:
    """Perturb *value* by a Gaussian step, clamped into [low, high].

    A step smaller than one unit in magnitude is pushed out to exactly +1 or
    -1 (keeping its sign, +1 for zero), so a mutation always moves the value
    before clamping.

    Args:
        value:  Current integer value.
        stddev: Standard deviation of the Gaussian step.
        low:    Smallest allowed result.
        high:   Largest allowed result.
        rng:    Random generator.

    Returns:
        The clamped, rounded new value.
    """
    delta = float(rng.normal(0.0, stddev))
    if abs(delta) < 1.0:
        delta = -1.0 if delta < 0 else 1.0
    return int(min(max(round(value + delta), low), high))


def _mutate_color(
    color: Color, rng: np.random.Generator, rate: float, sigma: float
) -> Color:
    return tuple(
        mutate_norm(c, sigma, 0, 255, rng) if rng.random() < rate else c
        for c in color
    )


def _random_color(rng: np.random.Generator, alpha: Optional[int]) -> Color:
    r, g, b, a = (int(c) for c in rng.integers(0, 256, size=4))
    return (r, g, b, a if alpha is None else alpha)


# ---------------------------------------------------------------------------
# Gene types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PolygonGene:
    """Closed polygon: ordered vertices in canvas coordinates plus a colour."""

    vertices: tuple[tuple[int, int], ...]
    color: Color

    kind = GeneKind.POLYGON

    def __post_init__(self) -> None:
        if len(self.vertices) < 3:
            raise InvariantViolation(
                f"a polygon needs at least 3 vertices, got {len(self.vertices)}"
            )

    def copy(self) -> "PolygonGene":
        """Return an independent gene with the same vertices and colour."""
        return PolygonGene(
            vertices=tuple((int(x), int(y)) for x, y in self.vertices),
            color=tuple(self.color),
        )

    def bounding_box(self) -> tuple[int, int, int, int]:
        """Smallest inclusive (x0, y0, x1, y1) box holding every vertex."""
        xs = [x for x, _ in self.vertices]
        ys = [y for _, y in self.vertices]
        return min(xs), min(ys), max(xs), max(ys)

    def mutated(
        self,
        rng: np.random.Generator,
        rate: float,
        color_sigma: float,
        geometry_sigma: tuple[float, float],
        bounds: tuple[int, int],
    ) -> "PolygonGene":
        """Return a copy with each channel and coordinate perturbed at *rate*.

        Returns *self* when no attribute was drawn for mutation.
        """
        max_x, max_y = bounds
        sigma_x, sigma_y = geometry_sigma
        color = _mutate_color(self.color, rng, rate, color_sigma)
        vertices = tuple(
            (
                mutate_norm(x, sigma_x, 0, max_x, rng) if rng.random() < rate else x,
                mutate_norm(y, sigma_y, 0, max_y, rng) if rng.random() < rate else y,
            )
            for x, y in self.vertices
        )
        if color == self.color and vertices == self.vertices:
            return self
        return PolygonGene(vertices=vertices, color=color)


@dataclass(frozen=True)
class RectangleGene:
    """Axis-aligned rectangle with inclusive pixel bounds plus a colour.

    Corners are normalised on construction so that x0 <= x1 and y0 <= y1.
    """

    x0: int
    y0: int
    x1: int
    y1: int
    color: Color

    kind = GeneKind.RECTANGLE

    def __post_init__(self) -> None:
        if self.x0 > self.x1:
            x0, x1 = self.x1, self.x0
            object.__setattr__(self, "x0", x0)
            object.__setattr__(self, "x1", x1)
        if self.y0 > self.y1:
            y0, y1 = self.y1, self.y0
            object.__setattr__(self, "y0", y0)
            object.__setattr__(self, "y1", y1)

    def copy(self) -> "RectangleGene":
        """Return an independent gene with the same bounds and colour."""
        return RectangleGene(
            int(self.x0), int(self.y0), int(self.x1), int(self.y1), tuple(self.color)
        )

    def bounding_box(self) -> tuple[int, int, int, int]:
        """Inclusive (x0, y0, x1, y1) bounds of the rectangle."""
        return self.x0, self.y0, self.x1, self.y1

    def mutated(
        self,
        rng: np.random.Generator,
        rate: float,
        color_sigma: float,
        geometry_sigma: tuple[float, float],
        bounds: tuple[int, int],
    ) -> "RectangleGene":
        """Return a copy with each channel and corner perturbed at *rate*.

        Args:
            rng:            Random generator.
            rate:           Per-attribute mutation probability.
            color_sigma:    Standard deviation for colour channels.
            geometry_sigma: (x, y) standard deviations for the corners.
            bounds:         Largest valid (x, y) coordinate.

        Returns:
            A new, normalised rectangle, or *self* when nothing was drawn.
        """
        max_x, max_y = bounds
        sigma_x, sigma_y = geometry_sigma
        color = _mutate_color(self.color, rng, rate, color_sigma)
        corners = []
        for value, sigma, high in (
            (self.x0, sigma_x, max_x),
            (self.y0, sigma_y, max_y),
            (self.x1, sigma_x, max_x),
            (self.y1, sigma_y, max_y),
        ):
            if rng.random() < rate:
                value = mutate_norm(value, sigma, 0, high, rng)
            corners.append(value)
        if color == self.color and tuple(corners) == self.bounding_box():
            return self
        return RectangleGene(*corners, color=color)


Gene = Union[PolygonGene, RectangleGene]


# ---------------------------------------------------------------------------
# Random initialisation
# ---------------------------------------------------------------------------

def random_gene(
    kind: GeneKind,
    target: Target,
    rng: np.random.Generator,
    vertex_count: int = 3,
    alpha: Optional[int] = 0,
) -> Gene:
    """Create a gene with uniformly random geometry and colour.

    Args:
        kind:         Primitive kind to create.
        target:       Target whose bounds limit the geometry.
        rng:          Random generator.
        vertex_count: Number of polygon vertices (ignored for rectangles).
        alpha:        Fixed alpha for the new colour; ``None`` draws it at
                      random.  The default of 0 starts genes fully transparent.

    Returns:
        A new gene.
    """
    color = _random_color(rng, alpha)
    xs = rng.integers(0, target.width, size=max(vertex_count, 2))
    ys = rng.integers(0, target.height, size=max(vertex_count, 2))

    if kind is GeneKind.RECTANGLE:
        return RectangleGene(int(xs[0]), int(ys[0]), int(xs[1]), int(ys[1]), color)
    return PolygonGene(
        vertices=tuple((int(x), int(y)) for x, y in zip(xs[:vertex_count], ys[:vertex_count])),
        color=color,
    )
