"""Build stored Dockerfiles into tagged images and report each build step."""

__version__ = "0.1.0"
