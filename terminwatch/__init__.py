"""Appointment availability monitor for the KFZ registration booking site."""

__version__ = "1.0.0"
