"""
Vector Conversion Gateway package.

FastAPI application exposing `/api/outline` (Ghostscript text-to-outline) and
`/api/cdr-to-pdf` (remote job conversion with a local notice fallback).
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
