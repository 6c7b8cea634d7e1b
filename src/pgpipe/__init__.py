"""
pgpipe - streaming PostgreSQL backup and restore pipelines
"""

__version__ = "1.0.0"
