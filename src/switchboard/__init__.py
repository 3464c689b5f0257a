"""Switchboard: a supervisor and protocol bridge for agent CLI processes."""

__version__ = "0.1.0"
