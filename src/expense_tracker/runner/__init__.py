"""
CLI runner module.

Provides commands:
- init: Write a default config file
- check: Test the extraction API connection
- extract: Extract documents and store them
- reconcile: Derive expenses and timeline from stored documents
- status: Entity counts per collection
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
