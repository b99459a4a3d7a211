"""Cricket scorekeeping backend: ball-by-ball scoring, figures and match lifecycle."""

__version__ = "0.3.0"
