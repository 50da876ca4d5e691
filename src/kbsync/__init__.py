"""kbsync: keep a local keymap mirror in sync with a keyboard over RPC."""

__version__ = "0.1.0"
