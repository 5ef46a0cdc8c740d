"""ToneMatch: dual-vector retrieval of tone-matched email examples."""

__version__ = "0.1.0"
