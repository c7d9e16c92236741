"""
Event Pipeline

Moves events from a partitioned Kafka log into a durable PostgreSQL job queue
and executes them through a bounded pool of workers with automatic retry.
"""

__version__ = "1.0.0"
