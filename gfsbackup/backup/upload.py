"""
Upload path for GFS backups.

Names the destination key (tier prefix plus timestamp suffix unless the
upload is verbatim), hands the file to the storage accessor and, for multipart
sized files, reports rough progress from a background thread until the
transfer finishes.
"""

import os
import math
import time
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from gfsbackup.config import Config, ConfigurationError
from .keys import build_key_name
from .storage import StorageError, UploadTimeoutError

logger = logging.getLogger(__name__)


def _deadline_callback(deadline: Optional[float], timeout):
    """
    Build a transfer callback that aborts the upload past ``deadline``.

    The callback runs inside the transfer workers; raising from it fails the
    transfer and the exception surfaces from the storage upload call. It backs
    up the storage deadline, which fires even when no bytes are moving.
    """
    if deadline is None:
        return None

    def _callback(bytes_amount: int) -> None:
        if time.monotonic() > deadline:
            raise UploadTimeoutError(f"Upload exceeded timeout of {timeout.total_seconds():.0f} seconds")

    return _callback


def check_upload_progress(storage, bucket: str, key: str, part_size: int, total_parts: int,
                          finished: threading.Event, poll_interval: float = Config.PROGRESS_POLL_INTERVAL):
    """
    Log the rough progress of a multipart upload until ``finished`` is set.

    Only reliable when no other multipart upload for the same key is running.
    With several workers the part count lags behind the bytes actually sent.
    """
    logger.info("Attempting to display progress of upload. This will give a very rough estimate of progress, "
                "especially if the upload is being handled by multiple workers")
    while not finished.wait(poll_interval):
        try:
            upload_id = storage.get_multipart_upload_id(bucket, key)
            parts_completed = storage.count_multipart_parts(bucket, key, upload_id)
        except StorageError as e:
            logger.warning(f"Failed to retrieve upload progress: {e}")
            continue
        logger.info(f"Upload progress: parts uploaded: {parts_completed}/{total_parts} "
                    f"({parts_completed * part_size} bytes)")

    logger.info("Stopping upload checks as upload has finished processing")


def upload_file(storage, upload_object, prefix: str, dry_run: bool = False,
                upload_time: Optional[datetime] = None,
                poll_interval: float = Config.PROGRESS_POLL_INTERVAL) -> str:
    """
    Upload a file and return the key it was stored under.

    Args:
        storage: Storage accessor
        upload_object: UploadObject describing the file and destination
        prefix: Tier prefix, used only when upload_object.manipulate is set
        dry_run: Compute the key and log, but transfer nothing
        upload_time: Time used for the key suffix (default: now, UTC)
        poll_interval: Seconds between progress reports

    Returns:
        Final key in the bucket

    Raises:
        ConfigurationError: If the upload parameters are invalid
        UploadTimeoutError: If the transfer exceeds upload_object.timeout
        StorageError: If the transfer fails
    """
    upload_object.validate()

    if not os.path.isfile(upload_object.path_to_file):
        raise ConfigurationError(f"File to upload not found: {upload_object.path_to_file}")

    if upload_time is None:
        upload_time = datetime.now(timezone.utc)

    key = build_key_name(upload_object, prefix, upload_time)
    file_size = os.path.getsize(upload_object.path_to_file)
    part_size = upload_object.part_size_bytes

    logger.info(f"Uploading '{upload_object.path_to_file}' ({file_size} bytes) to bucket "
                f"'{upload_object.bucket}' as '{key}'")
    logger.info(f"Upload part size is: {part_size} bytes")

    finished = threading.Event()
    poller = None
    if file_size >= part_size and not dry_run:
        total_parts = math.ceil(file_size / part_size)
        logger.info(f"Upload is larger than {part_size} bytes and therefore will be uploaded in {total_parts} chunks")
        poller = threading.Thread(
            target=check_upload_progress,
            args=(storage, upload_object.bucket, key, part_size, total_parts, finished, poll_interval),
            name='upload-progress',
            daemon=True
        )
        poller.start()

    timeout = upload_object.timeout
    deadline = time.monotonic() + timeout.total_seconds() if timeout.total_seconds() > 0 else None

    start_time = time.monotonic()
    try:
        if dry_run:
            logger.info(f"Skipping upload of key: '{key}' as dry run has been enabled")
        else:
            logger.info(f"Uploading is about to begin with a maximum of {upload_object.num_workers} workers")
            storage.upload(
                upload_object.path_to_file,
                upload_object.bucket,
                key,
                part_size=part_size,
                num_workers=upload_object.num_workers,
                callback=_deadline_callback(deadline, timeout),
                timeout=timeout.total_seconds() or None
            )
    except UploadTimeoutError as e:
        logger.error(f"Failed to upload file due to upload time exceeding specified timeout: {e}")
        raise
    except StorageError as e:
        logger.error(f"Failed to upload file: {e}")
        raise
    finally:
        finished.set()
        if poller is not None:
            poller.join()
        logger.info(f"Total time spent processing upload: {time.monotonic() - start_time:0.2f} seconds")

    return key
