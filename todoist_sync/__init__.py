"""
todoist-sync - keeps Obsidian checkbox tasks and Todoist in agreement.
"""

__version__ = "0.4.0"
