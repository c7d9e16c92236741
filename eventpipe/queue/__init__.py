"""
Queue module.
Contains the durable queue contract, the enqueue gateway, and retry policy.
"""
