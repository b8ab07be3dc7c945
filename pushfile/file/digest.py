"""
File Digests

Whole-file SHA-1 computed by streaming the file in fixed-size reads,
so hashing never loads the whole file into memory.
"""

import hashlib
import logging
from pathlib import Path

import aiofiles

logger = logging.getLogger(__name__)

# Read-ahead size used when hashing a file
HASH_READ_SIZE = 32 * 1024


async def sha1_file(file_path: Path, read_size: int = HASH_READ_SIZE) -> bytes:
    """
    Compute the SHA-1 digest of a file.

    Returns:
        20-byte raw digest
    """
    sha = hashlib.sha1()
    async with aiofiles.open(file_path, 'rb') as f:
        while True:
            block = await f.read(read_size)
            if not block:
                break
            sha.update(block)

    digest = sha.digest()
    logger.debug(f"SHA-1 of {Path(file_path).name}: {digest.hex()}")
    return digest
