"""Helpers shared by modules."""
