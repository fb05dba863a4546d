"""
Interface package for the VeriMed pipeline.
Provides the command-line interface.
"""

from .cli import cli

__all__ = [
    'cli'
]
