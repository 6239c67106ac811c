"""Configuration, pricing and server identity."""
