"""
File Module - Chunk Planning, Reading and Hashing

This module handles file operations for the uploader.
"""

from .chunker import (
    ChunkPlanner, ChunkReader, ChunkTask, ChunkStatus, CancelHandle,
    md5_file, READ_BURST_SIZE,
)

__all__ = [
    'ChunkPlanner',
    'ChunkReader',
    'ChunkTask',
    'ChunkStatus',
    'CancelHandle',
    'md5_file',
    'READ_BURST_SIZE',
]
