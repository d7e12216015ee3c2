"""Reliability — retry with exponential backoff for transient failures."""
