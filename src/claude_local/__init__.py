"""
claude-local - keeps Claude Code conversation history inside project folders.
"""

__version__ = "0.1.0"
