"""
Individuals, their fitness, and populations.

An individual is a fixed-length ordered genome of primitives.  Its phenotype
is produced by painting every gene, in order, over a canvas filled with the
target's mode colour; fitness is the summed per-pixel colour distance to the
target, scaled into roughly [0, 100].  Lower is better.

Rendering is lazy: the raster and score are cached on the individual and
recomputed only after the genome changes.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Sequence

import numpy as np
from PIL import Image, ImageDraw

from ga_errors import InvariantViolation
from ga_genes import Gene, GeneKind, PolygonGene, random_gene
from ga_target import Target


# ---------------------------------------------------------------------------
# Rendering and scoring
# ---------------------------------------------------------------------------

def _draw_primitive(draw: ImageDraw.ImageDraw, gene: Gene, offset: tuple[int, int]) -> None:
    ox, oy = offset
    x0, y0, x1, y1 = gene.bounding_box()
    if isinstance(gene, PolygonGene):
        points = [(x - ox, y - oy) for x, y in gene.vertices]
        draw.polygon(points, fill=gene.color, outline=gene.color, width=1)
    else:
        draw.rectangle([x0 - ox, y0 - oy, x1 - ox, y1 - oy], fill=gene.color)


def render_genome(genes: Iterable[Gene], target: Target) -> np.ndarray:
    """Paint *genes* in order over a canvas filled with the target mode colour.

    Opaque primitives are drawn straight onto the canvas.  Translucent ones
    are drawn on a transparent layer cropped to their bounding box and
    alpha-composited over the canvas.  Fully transparent primitives leave
    the canvas untouched and are skipped.

    Returns:
        A ``uint8`` array of shape (height, width, 4).
    """
    canvas = Image.new("RGBA", (target.width, target.height), target.mode_color())
    direct = ImageDraw.Draw(canvas)

    for gene in genes:
        alpha = gene.color[3]
        if alpha == 0:
            continue
        if alpha == 255:
            _draw_primitive(direct, gene, (0, 0))
            continue

        x0, y0, x1, y1 = gene.bounding_box()
        layer = Image.new("RGBA", (x1 - x0 + 1, y1 - y0 + 1), (0, 0, 0, 0))
        _draw_primitive(ImageDraw.Draw(layer), gene, (x0, y0))
        canvas.alpha_composite(layer, dest=(x0, y0))

    return np.array(canvas)


def score_canvas(canvas: np.ndarray, target: Target, score_alpha: bool = False) -> float:
    """Normalised distance between a rendered canvas and the target.

    Args:
        canvas:      RGBA array with the target's shape.
        target:      Target image.
        score_alpha: Include the alpha channel in the colour distance.

    Returns:
        Summed Euclidean colour distance divided by the worst case, times 100.
    """
    channels = 4 if score_alpha else 3
    diff = canvas[..., :channels].astype(np.float64) - target.pixels[..., :channels]
    raw = float(np.sqrt(np.square(diff).sum(axis=2)).sum())
    return (raw / target.max_distance(score_alpha)) * 100.0


def evaluate_genome(
    genes: Sequence[Gene], target: Target, score_alpha: bool = False
) -> tuple[float, np.ndarray]:
    """Render and score a genome; pure and deterministic.

    Returns:
        A tuple (fitness, raster).
    """
    canvas = render_genome(genes, target)
    return score_canvas(canvas, target, score_alpha), canvas


# ---------------------------------------------------------------------------
# Individual
# ---------------------------------------------------------------------------

class Individual:
    """A candidate image: an ordered genome with a lazily rendered phenotype.

    The genome length is fixed when the individual is created.  Every change
    to the genome goes through :meth:`set_gene` or :meth:`replace_genes`,
    which mark the cached raster and score stale.
    """

    def __init__(
        self, target: Target, genes: Sequence[Gene], score_alpha: bool = False
    ) -> None:
        if not genes:
            raise InvariantViolation("an individual needs at least one gene")
        self.target = target
        self.score_alpha = score_alpha
        self._genes: list[Gene] = list(genes)
        self._fitness: Optional[float] = None
        self._raster: Optional[np.ndarray] = None
        self.needs_render = True

    @classmethod
    def random(
        cls,
        target: Target,
        gene_count: int,
        kind: GeneKind,
        rng: np.random.Generator,
        vertex_count: int = 3,
        alpha: Optional[int] = 0,
        score_alpha: bool = False,
    ) -> "Individual":
        """Create an individual whose every gene is freshly random."""
        genes = [
            random_gene(kind, target, rng, vertex_count=vertex_count, alpha=alpha)
            for _ in range(gene_count)
        ]
        return cls(target, genes, score_alpha=score_alpha)

    # -- genome access ---------------------------------------------------

    @property
    def genes(self) -> tuple[Gene, ...]:
        return tuple(self._genes)

    @property
    def gene_count(self) -> int:
        return len(self._genes)

    def __len__(self) -> int:
        return len(self._genes)

    def set_gene(self, index: int, gene: Gene) -> None:
        """Replace the gene at *index* and mark the phenotype stale."""
        self._genes[index] = gene
        self.invalidate()

    def replace_genes(self, genes: Sequence[Gene]) -> None:
        """Swap in a whole new genome of the same length."""
        if len(genes) != len(self._genes):
            raise InvariantViolation(
                f"genome length is fixed at {len(self._genes)}, got {len(genes)}"
            )
        self._genes = list(genes)
        self.invalidate()

    def invalidate(self) -> None:
        """Mark the cached raster and fitness as stale."""
        self.needs_render = True

    # -- evaluation ------------------------------------------------------

    def fitness(self) -> float:
        """Fitness score (to be minimised), rendered and cached on demand."""
        if not self.needs_render:
            return self._fitness
        score, raster = evaluate_genome(self._genes, self.target, self.score_alpha)
        self.store_evaluation(score, raster)
        return score

    def store_evaluation(self, score: float, raster: np.ndarray) -> None:
        """Install a score and raster computed for the current genome."""
        self._fitness = score
        self._raster = raster
        self.needs_render = False

    def raster(self) -> np.ndarray:
        """Copy of the rendered RGBA raster, rendering first if stale."""
        if self.needs_render:
            self.fitness()
        return self._raster.copy()

    def to_image(self) -> Image.Image:
        """Rendered raster as a Pillow RGBA image."""
        return Image.fromarray(self.raster())

    def __repr__(self) -> str:
        score = "stale" if self.needs_render else f"{self._fitness:.5f}"
        return f"Individual(genes={len(self._genes)}, fitness={score})"


# ---------------------------------------------------------------------------
# Population
# ---------------------------------------------------------------------------

class Population:
    """Ordered collection of individuals with aggregate statistics."""

    def __init__(self, individuals: Optional[Iterable[Individual]] = None) -> None:
        self.individuals: list[Individual] = list(individuals or [])

    def __len__(self) -> int:
        return len(self.individuals)

    def __iter__(self) -> Iterator[Individual]:
        return iter(self.individuals)

    def __getitem__(self, index: int) -> Individual:
        return self.individuals[index]

    def append(self, individual: Individual) -> None:
        self.individuals.append(individual)

    def sort(self) -> None:
        """Order ascending by fitness: best first, worst last."""
        self.individuals.sort(key=lambda ind: ind.fitness())

    def _require_members(self) -> None:
        if not self.individuals:
            raise InvariantViolation("population is empty")

    @property
    def best(self) -> Individual:
        self._require_members()
        return self.individuals[0]

    @property
    def worst(self) -> Individual:
        self._require_members()
        return self.individuals[-1]

    def total_fitness(self) -> float:
        return sum(ind.fitness() for ind in self.individuals)

    def mean_fitness(self) -> float:
        self._require_members()
        return self.total_fitness() / len(self.individuals)
