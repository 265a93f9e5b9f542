"""
Workspace Sync - reconciliation between the local system of record and an
external Notion workspace
"""

__version__ = "1.0.0"
