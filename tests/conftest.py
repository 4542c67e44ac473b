"""Shared fixtures for the image evolution tests."""

from __future__ import annotations

import numpy as np
import pytest

from ga_genes import PolygonGene, RectangleGene
from ga_individual import Individual
from ga_target import Target

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
BLACK = (0, 0, 0, 255)


def solid_target(width: int, height: int, color=RED) -> Target:
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[...] = color
    return Target.from_array(pixels, name=f"solid-{width}x{height}")


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def red_target() -> Target:
    return solid_target(2, 2, RED)


@pytest.fixture
def black_target() -> Target:
    return solid_target(4, 4, BLACK)


@pytest.fixture
def big_target() -> Target:
    return solid_target(100, 100, BLACK)


@pytest.fixture
def triangle_individual(big_target) -> Individual:
    genes = [
        PolygonGene(((50, 50), (40, 60), (60, 40)), (100, 120, 140, 128)),
        PolygonGene(((30, 30), (70, 35), (45, 65)), (90, 60, 30, 200)),
        PolygonGene(((20, 80), (80, 20), (50, 50), (25, 25)), (10, 200, 90, 100)),
    ]
    return Individual(big_target, genes)


@pytest.fixture
def overlapping_individual(black_target) -> Individual:
    genes = [RectangleGene(0, 0, 2, 2, RED), RectangleGene(1, 1, 3, 3, BLUE)]
    return Individual(black_target, genes)


@pytest.fixture
def make_target():
    return solid_target
