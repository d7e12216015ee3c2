"""Shell adapters — command runner and filesystem helpers."""
