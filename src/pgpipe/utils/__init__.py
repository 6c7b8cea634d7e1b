"""
Utilities for pgpipe
"""

from .logger import get_logger, setup_logging, OperationLogger

__all__ = [
    'get_logger',
    'setup_logging',
    'OperationLogger'
]
