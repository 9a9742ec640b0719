"""A TCP code playground that builds and runs submitted programs in Docker containers."""

__version__ = "0.1.0"