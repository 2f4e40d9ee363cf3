"""Utility helpers."""

from .debug_logger import DebugLogger

__all__ = ["DebugLogger"]
