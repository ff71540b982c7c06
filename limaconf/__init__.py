"""Configuration, defaults, validation and host networking helpers for virtual machine instances."""

__version__ = "0.1.0"