"""
File Module - Local Files

Filesystem access for the transfer protocol.
"""

from .storage import FileStore

__all__ = ['FileStore']
