"""Core infrastructure: configuration, logging, processes and containers."""
