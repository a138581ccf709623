"""jab3ops - build, verify and promote automation for the jab3 service."""

__version__ = "0.1.0"
