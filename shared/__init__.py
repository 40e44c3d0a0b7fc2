"""Shared code used by every tool in the repository."""
