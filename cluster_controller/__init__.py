"""Cluster lifecycle controller for Cluster API resources."""

__version__ = "0.1.0"
