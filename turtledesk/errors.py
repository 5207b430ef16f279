"""Failure taxonomy for the signal, ladder, and sizing engine.

Every per-instrument failure carries a stable ``reason`` code so the
orchestrator can turn it into an exclusion record instead of aborting
the run.
"""


class TurtleError(Exception):
    """Base class for all turtledesk failures."""

    reason = "error"


class InsufficientHistory(TurtleError):
    """Not enough price samples to compute N or breakout levels."""

    reason = "insufficient_history"


class Unavailable(TurtleError):
    """An external provider failed, timed out, or returned malformed data."""

    reason = "unavailable"


class DataIntegrityRejected(Unavailable):
    """A price series failed the freshness / plausibility guard."""

    reason = "data_integrity_rejected"


class NoProvenance(TurtleError):
    """A held position has no turtle-tagged entry in the trade history."""

    reason = "no_provenance"


class MaxUnitsReached(TurtleError):
    """The pyramiding ladder already holds its maximum number of units."""

    reason = "max_units_reached"


class InsufficientData(TurtleError):
    """Sizing or a ladder operation was attempted without a valid N."""

    reason = "insufficient_data"


class FatalRunError(TurtleError):
    """The daily run cannot proceed at all."""

    reason = "fatal"
