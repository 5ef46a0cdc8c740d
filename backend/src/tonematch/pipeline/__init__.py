"""Draft-generation pipeline stages."""

from .example_selector import ExampleSelector

__all__ = ["ExampleSelector"]
