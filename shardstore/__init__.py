"""Sharded key/value store: shard controller, replica state machines, config cache and clerks."""

__version__ = "0.1.0"