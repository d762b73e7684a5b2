"""dracanus - goal orchestration for AI agents with governance, audit and learning."""

__version__ = "0.1.0"
