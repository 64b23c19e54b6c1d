"""Wellness companion: scheduled check-ins and coping recommendations."""

__version__ = "0.1.0"
