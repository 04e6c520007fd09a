"""
Backup executor - runs one action per invocation.

Actions:
1. backup: classify now into a tier, upload under the tier prefix, rotate
2. upload: upload the file verbatim, no rotation
3. rotate: rotate the daily and weekly tiers
4. download: fetch one object and report its MD5 digest
5. cleanup: abort abandoned multipart uploads
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from gfsbackup.utils.files import compute_md5
from .keys import classify
from .storage import S3Storage, LocalStorage, StorageError, UploadTimeoutError
from .rotation import RotationManager
from .upload import upload_file
from .download import download_file

logger = logging.getLogger(__name__)


def create_storage(local_root: Optional[str] = None, **s3_options):
    """
    Create the storage accessor for this invocation.

    Args:
        local_root: Use LocalStorage rooted here instead of S3
        **s3_options: Passed to S3Storage (region, profile, credentials_file, ...)
    """
    if local_root:
        return LocalStorage(local_root)
    return S3Storage(**s3_options)


class BackupExecutor:
    """
    Runs backup actions against one storage accessor.
    """

    def __init__(self, storage, dry_run: bool = False, poll_interval: Optional[float] = None):
        """
        Initialize backup executor.

        Args:
            storage: Storage accessor
            dry_run: Report what would happen without uploading or deleting
            poll_interval: Seconds between upload progress reports
        """
        self.storage = storage
        self.dry_run = dry_run
        self.poll_interval = poll_interval
        self.logs = []

    def backup(self, upload_object, policy, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Upload under the GFS prefix for ``now`` and then rotate.

        A failed upload skips rotation.

        Returns:
            Dict with 'key', 'prefix' and 'deleted_keys'

        Raises:
            ConfigurationError, StorageError, UploadTimeoutError: If the upload fails
        """
        if now is None:
            now = datetime.now(timezone.utc)

        self._log("Starting standard GFS upload and rotation")
        prefix = classify(policy, now)
        self._log(f"Backup classified with prefix: '{prefix}'")

        try:
            key = self._upload(upload_object, prefix, now)
        except (StorageError, UploadTimeoutError) as e:
            self._log(f"Failed to upload file. Skipping rotation. Reason: {e}", logging.ERROR)
            raise

        deleted_keys = self.rotate(upload_object.bucket, policy, bucket_dir=upload_object.bucket_dir)
        self._log("Upload and rotation complete")

        return {
            'key': key,
            'prefix': prefix,
            'deleted_keys': deleted_keys
        }

    def upload(self, upload_object) -> str:
        """
        Upload without rotating.

        Returns:
            Key the file was stored under
        """
        self._log("Upload action specified, uploading file")
        return self._upload(upload_object, '', None)

    def rotate(self, bucket: str, policy, bucket_dir: str = '') -> List[str]:
        """
        Rotate the daily and weekly tiers of ``bucket``.

        Returns:
            Keys deleted (or that would be deleted on a dry run)

        Raises:
            ConfigurationError: If the bucket or bucket dir is invalid
        """
        manager = RotationManager(self.storage)
        try:
            return manager.rotate(bucket, policy, dry_run=self.dry_run, bucket_dir=bucket_dir)
        finally:
            self.logs.extend(manager.logs)

    def download(self, download_object) -> Dict[str, str]:
        """
        Download one object and compute its MD5 digest.

        Returns:
            Dict with 'path' and 'md5'
        """
        self._log(f"Download action specified, fetching {download_object.key}")
        path = download_file(self.storage, download_object)
        md5 = compute_md5(path)
        self._log(f"Downloaded file md5: {md5}")
        return {
            'path': path,
            'md5': md5
        }

    def cleanup_multipart_uploads(self, bucket: str) -> List[str]:
        """
        Abort every multipart upload left in ``bucket``.

        Returns:
            Keys whose uploads were aborted (or would be on a dry run)
        """
        uploads = self.storage.list_multipart_uploads(bucket)
        self._log(f"Found {len(uploads)} multipart upload(s) in bucket: {bucket}")

        aborted = []
        for key, upload_id in uploads.items():
            if self.dry_run:
                self._log(f"Skipping abort of multipart upload for '{key}' as dry run has been enabled")
                aborted.append(key)
                continue
            try:
                self.storage.abort_multipart_upload(bucket, key, upload_id)
                aborted.append(key)
                self._log(f"Aborted multipart upload for '{key}'")
            except StorageError as e:
                self._log(f"Failed to abort multipart upload for '{key}': {e}", logging.ERROR)

        return aborted

    def _upload(self, upload_object, prefix: str, upload_time: Optional[datetime]) -> str:
        kwargs = {}
        if self.poll_interval is not None:
            kwargs['poll_interval'] = self.poll_interval

        key = upload_file(
            self.storage,
            upload_object,
            prefix,
            dry_run=self.dry_run,
            upload_time=upload_time,
            **kwargs
        )
        self._log(f"Uploaded file as: {key}")
        return key

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {logging.getLevelName(level)}: {message}")
        logger.log(level, message)
