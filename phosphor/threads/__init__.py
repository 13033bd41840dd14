"""
Background threads for long-running proxmark3 operations.
"""

from .stream_thread import StreamWorker

__all__ = ["StreamWorker"]
