"""Command-line interface package for taskboard analytics."""

__all__ = ["main"]


def main(*args, **kwargs):
    """Entry point that defers heavy imports until needed."""
    from .analytics_commands import main as analytics_main

    return analytics_main(*args, **kwargs)
