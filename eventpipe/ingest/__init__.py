"""
Ingestion module.
Consumes log records, validates them, and enqueues one job per event.
"""
