"""UXForge: turn PRDs and prompts into live mobile UI mockups."""

__version__ = "0.1.0"
