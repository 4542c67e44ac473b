"""Exceptions raised by the image evolution engine."""

from __future__ import annotations


class EvolutionError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(EvolutionError, ValueError):
    """Run parameters are invalid; detected before any population exists."""


class DecodeError(EvolutionError):
    """The target image could not be read or decoded."""


class InvariantViolation(EvolutionError, RuntimeError):
    """An internal precondition was broken (a programming error)."""
