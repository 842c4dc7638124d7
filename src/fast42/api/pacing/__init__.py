"""Request pacing for the 42 API.

Components:
- Limiter: per-credential reservoir + concurrency gate with job expiration
- LimiterBackend: pluggable counter store (InMemoryBackend, RedisBackend)
- RoundRobinDispatcher: picks the credential that serves the next call
"""

from .backends import Admission, InMemoryBackend, LimiterBackend, RedisBackend
from .dispatcher import RoundRobinDispatcher
from .limiter import Job, Limiter

__all__ = [
    # Limiting
    "Job",
    "Limiter",
    # Backends
    "Admission",
    "InMemoryBackend",
    "LimiterBackend",
    "RedisBackend",
    # Dispatch
    "RoundRobinDispatcher",
]
