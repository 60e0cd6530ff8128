"""
Salvo Infrastructure - System infrastructure components.

This module contains:
- database: SQLite encounter store
- parallel: Parallel batch battle analysis
"""

__all__: list[str] = []
