"""API Package for the REST Server."""

from .rest_api import create_app

__all__ = ["create_app"]
