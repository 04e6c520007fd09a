"""Download path: fetch a single object to a local file."""

import time
import logging

from .storage import StorageError

logger = logging.getLogger(__name__)


def download_file(storage, download_object) -> str:
    """
    Download ``download_object.key`` to ``download_object.download_location``.

    Returns:
        The local path written

    Raises:
        ConfigurationError: If the download parameters are invalid
        StorageError: If the object cannot be fetched
    """
    download_object.validate()

    logger.info(f"Attempting to download file from bucket '{download_object.bucket}': {download_object.key}")
    logger.info(f"Downloading is about to begin with a maximum of {download_object.num_workers} workers")

    start_time = time.monotonic()
    try:
        storage.download(
            download_object.bucket,
            download_object.key,
            download_object.download_location,
            part_size=download_object.part_size_bytes,
            num_workers=download_object.num_workers
        )
    except StorageError as e:
        logger.error(f"Failed to download '{download_object.key}': {e}")
        raise
    finally:
        logger.info(f"Total time spent processing download: {time.monotonic() - start_time:0.2f} seconds")

    logger.info(f"Downloading complete. '{download_object.key}' has been written to "
                f"'{download_object.download_location}'")
    return download_object.download_location
