"""
taskpilot - a tool-using coding agent for the terminal.
"""

__version__ = "0.1.0"
