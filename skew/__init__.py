"""A small reliable-UDP game zone server and its protocol building blocks."""

__version__ = "0.1.0"