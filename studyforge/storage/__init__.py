"""Persistence contracts."""
