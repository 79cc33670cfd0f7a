"""
Utils module for helper functions
"""
from utils.file_utils import atomic_write_json

__all__ = [
    'atomic_write_json',
]
