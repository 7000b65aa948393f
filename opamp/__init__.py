"""OpAMP server, agent registry, message types and agent supervision helpers."""

__version__ = "0.1.0"