"""
Resumable File Transfer

Push or pull a single named file over TCP, resuming from the last byte
the receiving side has on disk whenever the connection drops.
"""

__version__ = '0.1.0'
