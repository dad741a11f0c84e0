"""digitbot: automated digit contract trading over a streaming venue API."""

__version__ = "0.1.0"
