"""Datastore migrator: consolidate per-service database containers onto one target."""

__version__ = "0.1.0"
