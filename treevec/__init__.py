"""
treevec: vectorize a project tree and search it by similarity.
"""

__version__ = "1.0.0"
