"""
Unit tests for data models (gfsbackup/models.py).

Tests the rotation policy, upload and download descriptions and their validators.
"""

from datetime import datetime, timedelta, timezone

import pytest

from gfsbackup.config import Config, ConfigurationError
from gfsbackup.models import BucketEntry, RotationPolicy, UploadObject, DownloadObject, check_bucket


class TestBucketEntry:
    """Test BucketEntry."""

    def test_entries_are_immutable(self):
        entry = BucketEntry(key='daily_a', modified_time=datetime(2017, 9, 19, tzinfo=timezone.utc))

        with pytest.raises(AttributeError):
            entry.key = 'daily_b'

    def test_repr(self):
        entry = BucketEntry(key='daily_a', modified_time=datetime(2017, 9, 19, tzinfo=timezone.utc))

        assert repr(entry) == '<BucketEntry daily_a modified=2017-09-19T00:00:00+00:00>'


class TestRotationPolicy:
    """Test RotationPolicy construction and validation."""

    def test_from_hours(self):
        policy = RotationPolicy.from_hours(
            daily_retention_count=6,
            daily_retention_period=168,
            weekly_retention_count=4,
            weekly_retention_period=672
        )

        assert policy.daily_retention_period == timedelta(days=7)
        assert policy.weekly_retention_period == timedelta(days=28)
        assert policy.enforce_retention_period is True
        assert (policy.daily_prefix, policy.weekly_prefix, policy.monthly_prefix) == \
            ('daily_', 'weekly_', 'monthly_')

    def test_from_config(self):
        policy = RotationPolicy.from_config(Config)

        assert policy.daily_retention_count == Config.DAILY_RETENTION_COUNT
        assert policy.weekly_retention_period == timedelta(hours=Config.WEEKLY_RETENTION_PERIOD)

    def test_from_config_with_overrides(self):
        class ShortConfig(Config):
            DAILY_RETENTION_COUNT = 2
            ENFORCE_RETENTION_PERIOD = False

        policy = RotationPolicy.from_config(
            ShortConfig,
            daily_retention_period=24,
            weekly_retention_count=None,
            enforce_retention_period=None
        )

        assert policy.daily_retention_count == 2
        assert policy.daily_retention_period == timedelta(hours=24)
        assert policy.weekly_retention_count == Config.WEEKLY_RETENTION_COUNT
        assert policy.enforce_retention_period is False

    def test_from_config_rejects_invalid_override(self):
        with pytest.raises(ConfigurationError):
            RotationPolicy.from_config(Config, daily_retention_count=-1)

    def test_tiers_daily_then_weekly(self, policy):
        tiers = policy.tiers()

        assert [tier[0] for tier in tiers] == ['daily', 'weekly']
        assert tiers[0] == ('daily', 'daily_', timedelta(seconds=140), 6)
        assert tiers[1] == ('weekly', 'weekly_', timedelta(seconds=280), 4)

    def test_zero_counts_allowed(self):
        policy = RotationPolicy.from_hours(0, 0, 0, 0)

        assert policy.daily_retention_count == 0
        assert policy.weekly_retention_period == timedelta(0)

    @pytest.mark.parametrize('overrides', [
        {'daily_retention_count': -1},
        {'weekly_retention_count': -1},
        {'daily_retention_period': timedelta(hours=-1)},
        {'weekly_retention_period': timedelta(hours=-1)},
        {'daily_prefix': ''},
        {'monthly_prefix': ''},
        {'weekly_prefix': 'daily_'},
    ])
    def test_invalid_policy(self, overrides):
        values = dict(
            daily_retention_period=timedelta(hours=1),
            daily_retention_count=6,
            weekly_retention_period=timedelta(hours=1),
            weekly_retention_count=4
        )
        values.update(overrides)

        with pytest.raises(ConfigurationError):
            RotationPolicy(**values)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            RotationPolicy.from_hours(-1, 1, 1, 1)


class TestUploadObject:
    """Test UploadObject validation."""

    def test_defaults(self):
        upload_object = UploadObject(path_to_file='/tmp/backup', s3_file_name='backup', bucket='bucket')

        assert upload_object.timeout == timedelta(seconds=Config.TIMEOUT)
        assert upload_object.num_workers == Config.CONCURRENT_WORKERS
        assert upload_object.part_size_bytes == Config.PART_SIZE * 1024 * 1024
        assert upload_object.manipulate is True
        upload_object.validate()

    def test_minimum_part_size_accepted(self):
        UploadObject(path_to_file='/tmp/backup', s3_file_name='backup', bucket='bucket', part_size=5).validate()

    @pytest.mark.parametrize('overrides,message', [
        ({'bucket_dir': 'db'}, 'trailing slash'),
        ({'s3_file_name': ''}, 's3 file name'),
        ({'num_workers': 0}, 'concurrent workers'),
        ({'path_to_file': ''}, 'path to file'),
        ({'bucket': ''}, 'bucket'),
        ({'timeout': timedelta(seconds=-5)}, 'timeout'),
        ({'part_size': 4}, 'part size'),
    ])
    def test_invalid_upload(self, overrides, message):
        values = dict(path_to_file='/tmp/backup', s3_file_name='backup', bucket='bucket')
        values.update(overrides)

        with pytest.raises(ConfigurationError, match=message):
            UploadObject(**values).validate()

    def test_repr(self):
        upload_object = UploadObject(path_to_file='/tmp/backup', s3_file_name='backup',
                                     bucket='bucket', bucket_dir='db/')

        assert repr(upload_object) == '<UploadObject /tmp/backup -> bucket/db/backup>'


class TestDownloadObject:
    """Test DownloadObject validation."""

    def test_key_joins_bucket_dir(self):
        download_object = DownloadObject(download_location='/tmp/restore', s3_file_key='daily_backup',
                                         bucket='bucket', bucket_dir='db/')

        assert download_object.key == 'db/daily_backup'
        download_object.validate()

    @pytest.mark.parametrize('overrides', [
        {'bucket_dir': 'db'},
        {'s3_file_key': ''},
        {'download_location': ''},
        {'bucket': ''},
        {'num_workers': 0},
        {'part_size': 1},
    ])
    def test_invalid_download(self, overrides):
        values = dict(download_location='/tmp/restore', s3_file_key='daily_backup', bucket='bucket')
        values.update(overrides)

        with pytest.raises(ConfigurationError):
            DownloadObject(**values).validate()


class TestCheckBucket:
    """Test bucket location validation."""

    @pytest.mark.parametrize('bucket,bucket_dir', [
        ('bucket', ''),
        ('bucket', 'db/'),
    ])
    def test_accepted(self, bucket, bucket_dir):
        check_bucket(bucket, bucket_dir)

    @pytest.mark.parametrize('bucket,bucket_dir,message', [
        ('', '', 'bucket must be specified'),
        ('bucket', 'db', 'trailing slash'),
    ])
    def test_rejected(self, bucket, bucket_dir, message):
        with pytest.raises(ConfigurationError, match=message):
            check_bucket(bucket, bucket_dir)
