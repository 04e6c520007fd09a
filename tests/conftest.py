"""
Shared pytest fixtures for gfsbackup tests.

This module provides fixtures for:
- An in-memory storage accessor with controllable modification times
- Rotation policies
- Mocked S3 via moto
- Temporary file fixtures
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest
import boto3
from moto import mock_aws

from gfsbackup.models import RotationPolicy, UploadObject
from gfsbackup.backup.storage import StorageError

TEST_BUCKET = 'test-bucket'


class InMemoryStorage:
    """
    Storage accessor double keeping objects in a dict.

    Uploads are stamped with datetime.now(timezone.utc), so freezegun controls
    their modification time. Listing and deletion failures can be injected.
    """

    def __init__(self):
        self.objects = {}
        self.delete_calls = []
        self.failing_prefixes = set()
        self.failing_deletes = set()

    def put(self, bucket, key, modified_time, data=b''):
        self.objects[(bucket, key)] = (modified_time, data)

    def keys(self, bucket=TEST_BUCKET):
        return sorted(key for (b, key) in self.objects if b == bucket)

    def list_by_prefix(self, bucket, prefix):
        if prefix in self.failing_prefixes:
            raise StorageError(f"listing {prefix} failed")
        return {
            key: modified
            for (b, key), (modified, _) in self.objects.items()
            if b == bucket and key.startswith(prefix)
        }

    def list_all(self, bucket):
        return [
            {'Key': key, 'LastModified': modified, 'Size': len(data)}
            for (b, key), (modified, data) in self.objects.items()
            if b == bucket
        ]

    def delete(self, bucket, key):
        self.delete_calls.append(key)
        if key in self.failing_deletes:
            raise StorageError(f"delete {key} failed")
        self.objects.pop((bucket, key), None)
        return key

    def upload(self, local_path, bucket, key, part_size=None, num_workers=None, callback=None, timeout=None):
        with open(local_path, 'rb') as f:
            data = f.read()
        self.put(bucket, key, datetime.now(timezone.utc), data)
        if callback:
            callback(len(data))
        return key

    def download(self, bucket, key, destination, part_size=None, num_workers=None):
        try:
            _, data = self.objects[(bucket, key)]
        except KeyError:
            raise StorageError(f"Object not found: {bucket}/{key}")
        with open(destination, 'wb') as f:
            f.write(data)
        return destination

    def list_multipart_uploads(self, bucket):
        return {}

    def get_multipart_upload_id(self, bucket, key):
        raise StorageError("no multipart upload")

    def count_multipart_parts(self, bucket, key, upload_id):
        return 0

    def abort_multipart_upload(self, bucket, key, upload_id):
        return None


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers installed by configure_logging so they never outlive a test."""
    yield
    package_logger = logging.getLogger('gfsbackup')
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def storage():
    """Empty in-memory storage accessor."""
    return InMemoryStorage()


@pytest.fixture
def null_logger():
    """Logger that discards everything."""
    sink = logging.getLogger('gfsbackup.tests.sink')
    sink.addHandler(logging.NullHandler())
    sink.propagate = False
    return sink


@pytest.fixture
def policy():
    """
    Standard GFS policy (6 daily, 4 weekly) with short retention periods
    and enforcement disabled.
    """
    return RotationPolicy(
        daily_retention_period=timedelta(seconds=140),
        daily_retention_count=6,
        weekly_retention_period=timedelta(seconds=280),
        weekly_retention_count=4,
        enforce_retention_period=False
    )


@pytest.fixture
def enforced_policy():
    """Default retention periods (7 and 28 days) with enforcement enabled."""
    return RotationPolicy.from_hours(
        daily_retention_count=6,
        daily_retention_period=168,
        weekly_retention_count=4,
        weekly_retention_period=672,
        enforce_retention_period=True
    )


@pytest.fixture
def backup_file(tmp_path):
    """Small file to back up."""
    path = tmp_path / 'testBackupFile'
    path.write_bytes(b'this is just a little test file')
    return path


@pytest.fixture
def upload_object(backup_file):
    """UploadObject for backup_file with GFS naming enabled."""
    return UploadObject(
        path_to_file=str(backup_file),
        s3_file_name='testBackupFile',
        bucket=TEST_BUCKET,
        timeout=timedelta(hours=1),
        num_workers=5,
        part_size=50,
        manipulate=True
    )


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket=TEST_BUCKET)
        yield s3


@pytest.fixture
def s3_storage(mock_s3):
    """S3Storage pointed at the moto backend."""
    from gfsbackup.backup.storage import S3Storage

    return S3Storage(
        region='us-east-1',
        access_key='test_access_key',
        secret_key='test_secret_key'
    )


def seed_entries(storage, prefix, ages, now, bucket=TEST_BUCKET):
    """
    Put one object per age under ``prefix``.

    Returns:
        Keys ordered as ``ages`` was given
    """
    keys = []
    for index, age in enumerate(ages):
        key = f"{prefix}backup_{index:02d}"
        storage.put(bucket, key, now - age)
        keys.append(key)
    return keys
