"""Infrastructure layer — resilience and observability for the song fame engine.

Modules:
    retry       Exponential backoff retry decorator (favourite slot contention).
    metrics     Prometheus metrics registry.
"""
