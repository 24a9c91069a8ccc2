"""terminal-ai: multi-provider LLM dispatch with retry and fallback for the terminal."""

__version__ = "0.1.0"
