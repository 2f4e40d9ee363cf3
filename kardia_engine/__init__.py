"""Kardia Engine - contextual reply pipeline for the Kardia health coach."""

__version__ = "0.1.0"
