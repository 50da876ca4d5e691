"""Domain layer: wire models, keymap mirror, and parameter validation.

This layer depends only on stdlib and pydantic.
It must never import from sync, events, services, infrastructure, commands, or config.
"""
