"""
QueryGate CLI - Command-line interface for QueryGate

Usage:
    querygate --help
    querygate validate "SELECT * FROM sales"
    querygate run "SELECT * FROM sales" -t sales=sales.json -p region=EU
"""

from .querygate_cli import cli, main

__version__ = "1.0.0"
__all__ = ["cli", "main"]
