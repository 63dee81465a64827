"""
CLI runner module.

Provides commands:
- documents: List documents on the example backend
- token: Fetch a layer token
- check: Test backend connectivity
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
