"""WebSocket gateway streaming language-model answers to a medical chat UI."""

__version__ = "2.0.0"
