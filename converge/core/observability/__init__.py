"""Observability — process-wide logging setup."""
