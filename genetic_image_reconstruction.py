#!/usr/bin/env python
# coding: utf-8

"""
Genetic Algorithm for Image Reconstruction

Evolves a population of candidate images, each a fixed-length ordered list of
coloured polygons or rectangles painted over a background, toward a target
image.  The engine (``ga_evolution``) uses tournament selection, uniform
crossover, Gaussian mutation, elitism with shuffled elite clones, and adapts
its parameters when progress stalls.

This module is the command-line front end: it parses the run parameters,
configures logging, appends one CSV row per generation to the run log, writes
the best individual of every generation as a JPEG, and can plot the fitness
history at the end of the run.
"""

from __future__ import annotations

import argparse
import csv
import logging
import os
import sys
import time
from typing import Optional, Sequence, TextIO

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

from ga_errors import ConfigurationError, DecodeError  # noqa: E402
from ga_evolution import (  # noqa: E402
    EvolutionConfig,
    GenerationalController,
    GenerationStats,
)
from ga_genes import GeneKind  # noqa: E402
from ga_individual import Individual  # noqa: E402
from ga_target import Target  # noqa: E402

logger = logging.getLogger(__name__)

LOG_HEADER = ["Gen", "Best", "Worst", "Avg", "Timestamp"]


# ---------------------------------------------------------------------------
# Run log
# ---------------------------------------------------------------------------

class RunLog:
    """Append-only CSV log with one row per generation.

    A header row is written every time the log is opened, so a restarted run
    shows up as a fresh header in the middle of the file.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._file: TextIO = open(path, "a", newline="")
        self._writer = csv.writer(self._file)
        self._writer.writerow(LOG_HEADER)
        self._file.flush()

    def write(self, stats: GenerationStats) -> None:
        self._writer.writerow([
            f"{stats.generation}",
            f"{stats.best:.5f}",
            f"{stats.worst:.5f}",
            f"{stats.mean:.5f}",
            time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(stats.timestamp)),
        ])
        self._file.flush()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "RunLog":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def log_path_for(image: str, log_dir: str) -> str:
    """Run-log file name for a target image: ``<log_dir>/<basename>-log.csv``."""
    return os.path.join(log_dir, f"{os.path.basename(image)}-log.csv")


# ---------------------------------------------------------------------------
# Image output
# ---------------------------------------------------------------------------

def save_individual(individual: Individual, path: str, quality: int = 99) -> None:
    """Write an individual's rendered raster as a JPEG file.

    Args:
        individual: Individual to render.
        path:       Destination file name.
        quality:    JPEG quality.
    """
    individual.to_image().convert("RGB").save(path, format="JPEG", quality=quality)


def plot_fitness_history(history: Sequence[GenerationStats], path: str) -> None:
    """Plot best, mean and worst fitness per generation and save it as an image.

    Args:
        history: Statistics of every generation, in order.
        path:    Destination file name (format taken from the extension).
    """
    generations = [s.generation for s in history]
    fig = plt.figure()
    plt.plot(generations, [s.best for s in history], label="Best")
    plt.plot(generations, [s.mean for s in history], label="Mean")
    plt.plot(generations, [s.worst for s in history], label="Worst")
    plt.xlabel("Generation")
    plt.ylabel("Fitness (lower is better)")
    plt.title("Fitness vs generation")
    plt.ylim(bottom=0)
    plt.legend()
    fig.savefig(path)
    plt.close(fig)


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def _parse_size(value: str) -> tuple[int, int]:
    try:
        width, height = (int(part) for part in value.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected WIDTHxHEIGHT, got {value!r}")
    if width < 1 or height < 1:
        raise argparse.ArgumentTypeError(f"size must be positive, got {value!r}")
    return width, height


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser for an evolution run.

    Returns:
        An ArgumentParser with the run, output and logging options.
    """
    parser = argparse.ArgumentParser(
        prog="evoimage",
        description="Evolve polygons or rectangles toward a target image.",
    )
    parser.add_argument("--image", required=True, help="File name of target image")
    parser.add_argument("--mutation-rate", type=float, default=0.08,
                        help="Mutation rate to use")
    parser.add_argument("--crossover-rate", type=float, default=0.60,
                        help="Crossover rate to use")
    parser.add_argument("--pop-size", type=int, default=200,
                        help="Population size in a generation")
    parser.add_argument("--genes", type=int, default=700,
                        help="Number of primitives per individual")
    parser.add_argument("--shape", choices=[k.value for k in GeneKind],
                        default=GeneKind.POLYGON.value, help="Primitive kind")
    parser.add_argument("--vertices", type=int, default=3,
                        help="Vertices per polygon")
    parser.add_argument("--score-alpha", action="store_true",
                        help="Include transparency in the fitness distance")
    parser.add_argument("--max-generations", type=int, default=100000)
    parser.add_argument("--max-stall", type=int, default=1000,
                        help="Stop after this many generations without improvement")
    parser.add_argument("--target-fitness", type=float, default=0.01,
                        help="Stop once the best fitness falls below this")
    parser.add_argument("--resize", type=_parse_size, default=None, metavar="WxH",
                        help="Resize the target before evolving")
    parser.add_argument("--workers", type=int, default=None,
                        help="Parallel evaluation workers (default: CPU count, at least 2)")
    parser.add_argument("--executor", choices=["thread", "process"], default="thread")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-dir", default="logs", help="Directory for the CSV run log")
    parser.add_argument("--output-dir", default="output",
                        help="Directory for per-generation images ('' to disable)")
    parser.add_argument("--latest", default="latest.jpg",
                        help="File always holding the current best image ('' to disable)")
    parser.add_argument("--plot", default=None, metavar="PATH",
                        help="Save a fitness history plot here when the run ends")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def config_from_args(args: argparse.Namespace) -> EvolutionConfig:
    """Build and validate the run configuration from parsed arguments.

    Args:
        args: Namespace produced by :func:`build_parser`.

    Returns:
        A validated EvolutionConfig.

    Raises:
        ConfigurationError: If any parameter is out of range.
    """
    config = EvolutionConfig(
        mutation_rate=args.mutation_rate,
        crossover_rate=args.crossover_rate,
        population_size=args.pop_size,
        gene_count=args.genes,
        gene_kind=GeneKind(args.shape),
        vertex_count=args.vertices,
        score_alpha=args.score_alpha,
        max_generations=args.max_generations,
        max_stall=args.max_stall,
        target_fitness=args.target_fitness,
        workers=args.workers,
        executor=args.executor,
        seed=args.seed,
    )
    config.validate()
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the evolution from the command line.

    Args:
        argv: Arguments to parse; defaults to ``sys.argv[1:]``.

    Returns:
        Exit status: 0 on success, 2 on invalid parameters or an unreadable image.
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = config_from_args(args)
        logger.info("Loading image %s", args.image)
        target = Target.load(args.image, size=args.resize)
    except (ConfigurationError, DecodeError) as exc:
        logger.error("Fatal Error: %s", exc)
        return 2

    if args.output_dir:
        os.makedirs(args.output_dir, exist_ok=True)

    log_file = log_path_for(args.image, args.log_dir)
    logger.info("Opening log file %s", log_file)

    with RunLog(log_file) as run_log:
        def report(stats: GenerationStats, best: Individual) -> None:
            run_log.write(stats)
            if args.output_dir:
                save_individual(
                    best, os.path.join(args.output_dir, f"gen-{stats.generation:010d}.jpg")
                )
            if args.latest:
                save_individual(best, args.latest)

        controller = GenerationalController(target, config)
        result = controller.run(on_generation=report)

    if args.plot:
        plot_fitness_history(result.history, args.plot)
        logger.info("Wrote fitness plot %s", args.plot)

    print(f"{result.reason.value}: best fitness {result.last.best:.5f} "
          f"after {result.last.generation + 1} generations")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
