"""x402 Swarm storage service."""

__version__ = "1.0.0"
