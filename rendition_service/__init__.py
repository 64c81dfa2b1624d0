"""
Rendition optimizer service package.

Exposes reusable primitives for planning renditions, encoding them with
Pillow, running batches over an in-memory job registry, and serving the
FastAPI application.
"""
