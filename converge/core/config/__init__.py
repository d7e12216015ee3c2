"""Configuration — manifest loading and run settings."""
