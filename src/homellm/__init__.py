"""LLM chat service with tool calling for home automation."""

__version__ = "0.1.0"
