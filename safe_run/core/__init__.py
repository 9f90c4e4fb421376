"""Core pipeline: placeholder resolution, environment composition, launching."""
