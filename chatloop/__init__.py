"""chatloop -- streaming tool-calling conversation loop for LLM providers."""

__version__ = "0.1.0"
