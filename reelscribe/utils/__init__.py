"""Shared helpers: logging and cancellation."""
