"""cubic-plugin: install cubic skills, commands and MCP config into AI coding agents."""

__version__ = "1.0.0"
