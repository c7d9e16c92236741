"""
Operator API module.
Read-only job inspection plus re-queueing of terminally failed jobs.
"""
