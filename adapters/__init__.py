"""Swappable infrastructure adapters for the health journal."""
