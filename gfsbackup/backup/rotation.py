"""
GFS rotation of daily and weekly backups.

For each rotated tier the objects under the tier prefix are sorted newest
first and everything beyond the retention count is a deletion candidate.
Candidates younger than the retention period are skipped when the period is
enforced, and deleted with a PolicyViolationWarning when it is not. Monthly
objects are never rotated; bucket lifecycle rules are expected to manage them.
"""

import logging
import warnings
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from gfsbackup.models import BucketEntry, check_bucket
from .storage import StorageError


class PolicyViolationWarning(UserWarning):
    """Issued when a key younger than its retention period is deleted."""


def sort_entries_by_time(keys) -> List[BucketEntry]:
    """
    Turn a key -> last modified mapping into entries, newest first.

    Entries sharing a timestamp keep no particular order.
    """
    entries = [BucketEntry(key=key, modified_time=modified) for key, modified in keys.items()]
    return sorted(entries, key=lambda entry: entry.modified_time, reverse=True)


def _describe_age(age: timedelta) -> str:
    seconds = age.total_seconds()
    return f"{seconds / 3600:0.1f} hours / {seconds / 60:0.1f} minutes"


class RotationManager:
    """
    Runs GFS rotation passes against a storage accessor.

    Every message is sent to the logger and kept in ``logs`` so a caller can
    report the full transcript of a pass.
    """

    def __init__(self, storage, logger: Optional[logging.Logger] = None):
        """
        Initialize rotation manager.

        Args:
            storage: Storage accessor (S3Storage, LocalStorage or compatible)
            logger: Logger to report to (default: module logger)
        """
        self.storage = storage
        self.logger = logger or logging.getLogger(__name__)
        self.logs = []

    def rotate(self, bucket: str, policy, dry_run: bool = False, bucket_dir: str = '') -> List[str]:
        """
        Rotate the daily tier, then the weekly tier.

        Once the bucket and bucket dir are accepted nothing is raised: a tier
        that fails is logged and contributes no keys.

        Args:
            bucket: Bucket to rotate
            policy: RotationPolicy to apply
            dry_run: Report candidates without deleting anything
            bucket_dir: Directory the tier prefixes live under

        Returns:
            Keys deleted (or that would be deleted) across both tiers

        Raises:
            ConfigurationError: If the bucket is empty or bucket_dir lacks its trailing slash
        """
        check_bucket(bucket, bucket_dir)

        self._log(f"Starting GFS rotation for bucket: {bucket}")
        if dry_run:
            self._log("Dry run enabled, no keys will be deleted")

        deleted_keys = []

        for tier, prefix, retention_period, retention_count in policy.tiers():
            self._log(f"Starting {tier} key rotation")
            try:
                deleted_keys.extend(self.rotate_tier(
                    bucket,
                    retention_period,
                    retention_count,
                    f"{bucket_dir}{prefix}",
                    policy.enforce_retention_period,
                    dry_run
                ))
            except Exception as e:
                self._log(f"Failed to rotate {tier} keys: {e}", logging.ERROR)

        self._log(f"The total number of keys deleted for this rotation was: {len(deleted_keys)}")
        for key in deleted_keys:
            self._log(f"Key deleted in rotation: '{key}'")
        self._log("Finished GFS rotation")

        return deleted_keys

    def rotate_tier(self, bucket: str, retention_period: timedelta, retention_count: int, prefix: str,
                    enforce_retention_period: bool, dry_run: bool = False) -> List[str]:
        """
        Rotate the keys of a single tier.

        Args:
            bucket: Bucket to rotate
            retention_period: Minimum age before a key may be deleted
            retention_count: Number of most recently modified keys to keep
            prefix: Key prefix identifying the tier
            enforce_retention_period: Skip candidates younger than the period
            dry_run: Report candidates without deleting anything

        Returns:
            Keys deleted (or that would be deleted), in the order processed
        """
        self._log(f"Attempting to retrieve list of keys with prefix: '{prefix}'")
        try:
            sorted_entries = sort_entries_by_time(self.storage.list_by_prefix(bucket, prefix))
        except StorageError as e:
            self._log(f"Failed to retrieve keys with prefix: '{prefix}' from bucket: {bucket}: {e}", logging.ERROR)
            return []

        for entry in sorted_entries:
            self._log(f"Found key: '{entry.key}'", logging.DEBUG)
        self._log(f"Found {len(sorted_entries)} key(s) with '{prefix}' prefix")

        if not sorted_entries:
            self._log(f"No '{prefix}' key(s) found for rotation")
            return []

        num_keys = len(sorted_entries)
        if num_keys <= retention_count:
            self._log(
                f"Skipping rotation for '{prefix}' keys due to insufficient number of keys. "
                f"Minimum of {retention_count + 1} keys required for rotation. Found {num_keys} key(s)"
            )
            return []

        self._log(
            f"Total number of '{prefix}' keys ({num_keys}) exceeds retention policy of "
            f"{retention_count}, purging old keys"
        )

        now = datetime.now(timezone.utc)
        deleted_keys = []

        for entry in sorted_entries[retention_count:]:
            key = entry.key
            key_age = now - entry.modified_time
            self._log(f"Candidate key for deletion: '{key}' is {_describe_age(key_age)} old")

            if key_age <= retention_period:
                if enforce_retention_period:
                    self._log(
                        f"Key: '{key}' is in violation of retention policy count. However, enforce retention "
                        f"period is enabled and the key was last modified {_describe_age(key_age)} ago, less "
                        f"than the retention period of {_describe_age(retention_period)}. This key is not "
                        f"eligible for deletion until the retention period has elapsed",
                        logging.ERROR
                    )
                    continue

                message = (
                    f"Key: '{key}' is in violation of retention policy count. However, enforce retention "
                    f"period is NOT enabled. The key was last modified {_describe_age(key_age)} ago, less "
                    f"than the retention period of {_describe_age(retention_period)}. This key WILL be deleted"
                )
                self._log(message, logging.WARNING)
                warnings.warn(message, PolicyViolationWarning, stacklevel=2)

            if dry_run:
                self._log(f"Skipping deletion of key: '{key}' as dry run has been enabled")
                deleted_keys.append(key)
                continue

            try:
                deleted_keys.append(self.storage.delete(bucket, key))
                self._log(f"Successfully deleted key from bucket: '{key}'")
            except StorageError as e:
                self._log(f"Failed to delete key from bucket: '{key}': {e}", logging.ERROR)

        return deleted_keys

    def _log(self, message: str, level: int = logging.INFO):
        """
        Log a message and keep it in the transcript.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {logging.getLevelName(level)}: {message}")
        self.logger.log(level, message)


def start_rotation(storage, bucket: str, policy, dry_run: bool = False, bucket_dir: str = '',
                   logger: Optional[logging.Logger] = None) -> List[str]:
    """
    Run one GFS rotation pass.

    Returns:
        Keys deleted (or that would be deleted) by RotationManager.rotate()
    """
    manager = RotationManager(storage, logger=logger)
    return manager.rotate(bucket, policy, dry_run=dry_run, bucket_dir=bucket_dir)
