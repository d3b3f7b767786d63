"""Shared helpers for taskboard."""
