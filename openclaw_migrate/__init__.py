"""OpenClaw installation discovery and migration."""

__version__ = "1.1.0"
