"""Configuration layer: section models, settings sources, and logging setup."""
