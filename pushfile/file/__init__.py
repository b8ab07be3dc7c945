"""
File Module - Digests

Helpers for hashing files on disk before/after a transfer.
"""

from .digest import HASH_READ_SIZE, sha1_file

__all__ = [
    'sha1_file',
    'HASH_READ_SIZE',
]
