"""sdlcflow: human-gated agentic SDLC pipeline."""

__version__ = "0.1.0"
