"""Shared primitives for ToneMatch."""
