"""
Storage accessors for GFS backups.

Supports:
- S3Storage: Objects in an S3 (or S3 compatible) bucket
- LocalStorage: Objects stored as files under a local directory

Both expose the same contract: list by prefix, list all, delete, upload,
download and the multipart helpers used for progress reporting. No ordering is
guaranteed by any listing.
"""

import os
import shutil
import logging
import threading
from concurrent.futures import CancelledError
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Callable, Dict

import boto3
import botocore.session
from boto3.s3.transfer import TransferConfig, ProgressCallbackInvoker, create_transfer_manager
from botocore.client import Config
from botocore.exceptions import ClientError, BotoCoreError

DEFAULT_PART_SIZE = 50 * 1024 * 1024  # 50MiB
DEFAULT_WORKERS = 5

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class UploadTimeoutError(Exception):
    """Raised when an upload exceeds its deadline."""
    pass


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


def create_s3_client(region: str = 'us-east-1', access_key: Optional[str] = None,
                     secret_key: Optional[str] = None, profile: Optional[str] = None,
                     credentials_file: Optional[str] = None, endpoint_url: Optional[str] = None):
    """
    Create a boto3 S3 client.

    Explicit keys win over the shared credentials file. When neither is given
    boto3 falls back to its usual environment/instance credential chain.

    Args:
        region: AWS region
        access_key: AWS access key ID
        secret_key: AWS secret access key
        profile: Profile to read from the shared credentials file
        credentials_file: Path to an AWS CLI credentials file
        endpoint_url: Custom endpoint for S3 compatible stores

    Raises:
        StorageError: If the client cannot be created (e.g. unknown profile)
    """
    try:
        core_session = botocore.session.Session(profile=profile)
        if credentials_file:
            core_session.set_config_variable('credentials_file', credentials_file)
        session = boto3.session.Session(botocore_session=core_session, region_name=region)
        return session.client(
            's3',
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            endpoint_url=endpoint_url,
            config=Config(signature_version='s3v4')
        )
    except (BotoCoreError, ValueError) as e:
        raise StorageError(f"Failed to initialize S3 client: {e}")


class S3Storage:
    """
    Storage accessor backed by an S3 bucket.

    The bucket is passed to every operation so one accessor can serve any
    bucket the credentials can reach.
    """

    def __init__(self, region: str = 'us-east-1', access_key: Optional[str] = None,
                 secret_key: Optional[str] = None, profile: Optional[str] = None,
                 credentials_file: Optional[str] = None, endpoint_url: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID
            secret_key: AWS secret access key
            profile: Shared credentials profile
            credentials_file: Path to the shared credentials file
            endpoint_url: Custom endpoint for S3 compatible stores
        """
        self.region = region
        self.s3_client = create_s3_client(
            region=region,
            access_key=access_key,
            secret_key=secret_key,
            profile=profile,
            credentials_file=credentials_file,
            endpoint_url=endpoint_url
        )

    def list_by_prefix(self, bucket: str, prefix: str) -> Dict[str, datetime]:
        """
        List objects whose key starts with ``prefix``.

        Returns:
            Mapping of key to LastModified (aware UTC datetime)

        Raises:
            StorageError: If listing fails
        """
        try:
            keys = {}
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get('Contents', []):
                    keys[obj['Key']] = obj['LastModified']

            return keys

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def list_all(self, bucket: str) -> list:
        """
        List every object in the bucket.

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=bucket):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def delete(self, bucket: str, key: str) -> str:
        """
        Delete an object from S3.

        Returns:
            The deleted key

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(Bucket=bucket, Key=key)
            return key
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def upload(self, local_path: str, bucket: str, key: str, part_size: int = DEFAULT_PART_SIZE,
               num_workers: int = DEFAULT_WORKERS, callback: Optional[Callable[[int], None]] = None,
               timeout: Optional[float] = None) -> str:
        """
        Upload a file using boto3's managed transfer.

        Files of at least ``part_size`` bytes are sent as a multipart upload
        with up to ``num_workers`` parts in flight. ``callback`` receives the
        byte count of each transferred chunk; any exception it raises aborts
        the transfer and is re-raised here unchanged.

        When ``timeout`` (seconds) elapses the transfer is cancelled whether or
        not bytes are still moving. A timed out upload leaves no object behind.

        Returns:
            S3 key of uploaded file

        Raises:
            UploadTimeoutError: If the transfer exceeds ``timeout``
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            max_concurrency=num_workers,
            use_threads=True
        )
        subscribers = [ProgressCallbackInvoker(callback)] if callback else None

        try:
            # Leaving the manager waits for in-flight requests, cancelled or not
            with create_transfer_manager(self.s3_client, transfer_config) as manager:
                future = manager.upload(local_path, bucket, key, subscribers=subscribers)
                timer = None
                if timeout:
                    timer = threading.Timer(timeout, future.cancel)
                    timer.daemon = True
                    timer.start()
                try:
                    future.result()
                finally:
                    if timer is not None:
                        timer.cancel()
            return key
        except CancelledError:
            self._discard(bucket, key)
            raise UploadTimeoutError(f"Upload exceeded timeout of {timeout:g} seconds")
        except UploadTimeoutError:
            self._discard(bucket, key)
            raise
        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read {local_path}: {e}")

    def _discard(self, bucket: str, key: str):
        """Remove whatever a cancelled upload managed to store under ``key``."""
        try:
            self.s3_client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Failed to remove '{key}' after a timed out upload: {e}")

    def download(self, bucket: str, key: str, destination: str, part_size: int = DEFAULT_PART_SIZE,
                 num_workers: int = DEFAULT_WORKERS) -> str:
        """
        Download an object to ``destination``.

        Raises:
            StorageError: If the object cannot be fetched or written
        """
        transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            max_concurrency=num_workers,
            use_threads=True
        )

        try:
            self.s3_client.download_file(bucket, key, destination, Config=transfer_config)
            return destination
        except ClientError as e:
            raise StorageError(f"S3 download failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 download failed: {e}")
        except OSError as e:
            raise StorageError(f"Failed to write {destination}: {e}")

    def list_multipart_uploads(self, bucket: str) -> Dict[str, str]:
        """Return in-flight multipart uploads as a mapping of key to upload id."""
        try:
            response = self.s3_client.list_multipart_uploads(Bucket=bucket)
            return {upload['Key']: upload['UploadId'] for upload in response.get('Uploads', [])}
        except ClientError as e:
            raise StorageError(f"S3 list multipart uploads failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list multipart uploads: {e}")

    def get_multipart_upload_id(self, bucket: str, key: str) -> str:
        """
        Find the upload id of the multipart upload in flight for ``key``.

        Raises:
            StorageError: Unless exactly one upload exists for the key
        """
        try:
            response = self.s3_client.list_multipart_uploads(Bucket=bucket, Prefix=key)
        except ClientError as e:
            raise StorageError(f"S3 list multipart uploads failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list multipart uploads: {e}")

        uploads = [upload for upload in response.get('Uploads', []) if upload['Key'] == key]
        if len(uploads) != 1:
            raise StorageError(f"Expected exactly one multipart upload for {key}, found {len(uploads)}")
        return uploads[0]['UploadId']

    def count_multipart_parts(self, bucket: str, key: str, upload_id: str) -> int:
        """Return the number of parts uploaded so far for a multipart upload."""
        try:
            response = self.s3_client.list_parts(Bucket=bucket, Key=key, UploadId=upload_id)
            return len(response.get('Parts', []))
        except ClientError as e:
            raise StorageError(f"S3 list parts failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list parts: {e}")

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str):
        try:
            self.s3_client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
        except ClientError as e:
            raise StorageError(f"S3 abort multipart upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to abort multipart upload: {e}")

    def test_connection(self, bucket: str) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=bucket)
            return True
        except ClientError as e:
            error_code = _error_code(e)
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {bucket}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {bucket}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")


class LocalStorage:
    """
    Storage accessor backed by the local filesystem.

    Objects live at {base_path}/{bucket}/{key}; a file's mtime is its
    modification time. Uploads are plain copies, so the multipart helpers
    report nothing in flight.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory holding one sub-directory per bucket
        """
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def _bucket_path(self, bucket: str) -> Path:
        return self.base_path / bucket

    def _iter_files(self, bucket: str):
        bucket_path = self._bucket_path(bucket)
        if not bucket_path.exists():
            return
        for file_path in bucket_path.rglob('*'):
            if file_path.is_file():
                yield file_path.relative_to(bucket_path).as_posix(), file_path.stat()

    def list_by_prefix(self, bucket: str, prefix: str) -> Dict[str, datetime]:
        try:
            return {
                key: datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
                for key, stat in self._iter_files(bucket)
                if key.startswith(prefix)
            }
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

    def list_all(self, bucket: str) -> list:
        try:
            return [
                {
                    'Key': key,
                    'LastModified': datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    'Size': stat.st_size
                }
                for key, stat in self._iter_files(bucket)
            ]
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

    def delete(self, bucket: str, key: str) -> str:
        full_path = self._bucket_path(bucket) / key

        try:
            if full_path.exists():
                full_path.unlink()
            return key
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file: {e}")

    def upload(self, local_path: str, bucket: str, key: str, part_size: int = DEFAULT_PART_SIZE,
               num_workers: int = DEFAULT_WORKERS, callback: Optional[Callable[[int], None]] = None,
               timeout: Optional[float] = None) -> str:
        # A local copy has no transfer to cancel; the deadline only reaches it through callback
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        dest_path = self._bucket_path(bucket) / key

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            # copyfile, not copy2: the stored object must carry the upload time
            shutil.copyfile(local_path, dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")

        if callback:
            callback(os.path.getsize(dest_path))
        return key

    def download(self, bucket: str, key: str, destination: str, part_size: int = DEFAULT_PART_SIZE,
                 num_workers: int = DEFAULT_WORKERS) -> str:
        source_path = self._bucket_path(bucket) / key
        if not source_path.is_file():
            raise StorageError(f"Object not found: {bucket}/{key}")

        try:
            shutil.copyfile(source_path, destination)
            return destination
        except OSError as e:
            raise StorageError(f"Failed to write {destination}: {e}")

    def list_multipart_uploads(self, bucket: str) -> Dict[str, str]:
        return {}

    def get_multipart_upload_id(self, bucket: str, key: str) -> str:
        raise StorageError(f"No multipart upload in flight for {key}")

    def count_multipart_parts(self, bucket: str, key: str, upload_id: str) -> int:
        return 0

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str):
        return None

    def test_connection(self, bucket: str) -> bool:
        if not self._bucket_path(bucket).is_dir():
            raise StorageError(f"Bucket does not exist: {bucket}")
        return True
