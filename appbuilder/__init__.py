"""Toolkit for packaging desktop applications: block maps, downloads, tool caching, node module discovery, native rebuilds and archives."""

__version__ = "3.5.10"