"""
Backup module for gfsbackup.

This module handles the core GFS functionality including:
- Key classification and naming
- Storage (S3 and local)
- Rotation of daily and weekly tiers
- Upload and download
- Execution of one action per invocation
"""

from .keys import classify, build_key_name
from .storage import S3Storage, LocalStorage, StorageError, UploadTimeoutError
from .rotation import RotationManager, PolicyViolationWarning, start_rotation
from .upload import upload_file
from .download import download_file
from .executor import BackupExecutor, create_storage

__all__ = [
    'classify',
    'build_key_name',
    'S3Storage',
    'LocalStorage',
    'StorageError',
    'RotationManager',
    'PolicyViolationWarning',
    'start_rotation',
    'upload_file',
    'UploadTimeoutError',
    'download_file',
    'BackupExecutor',
    'create_storage'
]
