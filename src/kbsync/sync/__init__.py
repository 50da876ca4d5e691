"""Synchronization layer: undo/redo history and the device sync controller."""

from kbsync.sync.controller import DeviceSyncController
from kbsync.sync.history import CommandEntry, CommandStack

__all__ = ["CommandEntry", "CommandStack", "DeviceSyncController"]
