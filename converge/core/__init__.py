"""Core — errors, configuration, models, engine and persistence."""
