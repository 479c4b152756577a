"""Idle Counter: a shared counter that resets itself after inactivity."""

__version__ = "0.1.0"
