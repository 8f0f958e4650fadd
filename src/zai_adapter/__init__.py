"""OpenAI-compatible chat completions proxy for the Z.ai chat API."""

__version__ = "0.1.0"
