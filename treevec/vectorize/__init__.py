"""
Hierarchical vectorization of project files and directories.
"""

from .file_status import FileStatus, FileStatusService
from .file_vectorizer import FileVectorizer
from .directory_vectorizer import DirectoryVectorizer
from .orchestrator import TreeNode, VectorizationOrchestrator

__all__ = [
    'FileStatus',
    'FileStatusService',
    'FileVectorizer',
    'DirectoryVectorizer',
    'TreeNode',
    'VectorizationOrchestrator',
]
