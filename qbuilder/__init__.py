"""
Q-Builder — Quote PDF Service

Packages:
    api/        Flask Blueprint: PDF download, quote mutations, cache admin
    forms/      Quote PDF composer, Hebrew formatting, read-through orchestrator
    core/       Paths, configuration, errors, SQLite quote store, PDF cache
"""

__version__ = "1.0.0"
