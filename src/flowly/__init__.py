"""
Flowly productivity backend.

The FastAPI application lives in ``flowly.main``; statistics are computed by
the pure functions in ``flowly.stats``.
"""
