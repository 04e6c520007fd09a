from dataclasses import dataclass, field
from datetime import datetime, timedelta

from gfsbackup.config import Config, ConfigurationError

MIN_PART_SIZE_MB = 5  # S3 rejects multipart parts smaller than 5 MiB


@dataclass(frozen=True)
class BucketEntry:
    """An object key and its last modified time as seen by a listing"""
    key: str
    modified_time: datetime

    def __repr__(self):
        return f'<BucketEntry {self.key} modified={self.modified_time.isoformat()}>'


@dataclass(frozen=True)
class RotationPolicy:
    """GFS rotation rules for the daily and weekly tiers"""
    daily_retention_period: timedelta
    daily_retention_count: int
    weekly_retention_period: timedelta
    weekly_retention_count: int
    daily_prefix: str = Config.DAILY_PREFIX
    weekly_prefix: str = Config.WEEKLY_PREFIX
    monthly_prefix: str = Config.MONTHLY_PREFIX  # Never rotated, lifecycle rules handle these
    enforce_retention_period: bool = True

    def __post_init__(self):
        if self.daily_retention_count < 0:
            raise ConfigurationError("daily retention count must not be less than 0")
        if self.weekly_retention_count < 0:
            raise ConfigurationError("weekly retention count must not be less than 0")
        if self.daily_retention_period < timedelta(0):
            raise ConfigurationError("daily retention period must not be negative")
        if self.weekly_retention_period < timedelta(0):
            raise ConfigurationError("weekly retention period must not be negative")

        prefixes = (self.daily_prefix, self.weekly_prefix, self.monthly_prefix)
        if not all(prefixes):
            raise ConfigurationError("daily, weekly and monthly prefixes must not be empty")
        if len(set(prefixes)) != len(prefixes):
            raise ConfigurationError(f"daily, weekly and monthly prefixes must be distinct, got {prefixes}")

    @classmethod
    def from_hours(cls, daily_retention_count, daily_retention_period, weekly_retention_count,
                   weekly_retention_period, enforce_retention_period=True, **prefixes):
        """Build a policy from retention periods expressed in hours."""
        return cls(
            daily_retention_period=timedelta(hours=daily_retention_period),
            daily_retention_count=daily_retention_count,
            weekly_retention_period=timedelta(hours=weekly_retention_period),
            weekly_retention_count=weekly_retention_count,
            enforce_retention_period=enforce_retention_period,
            **prefixes
        )

    @classmethod
    def from_config(cls, config=Config, **overrides):
        """
        Build a policy from configuration settings.

        Keyword overrides use the from_hours() argument names; None values
        leave the configured setting in place.
        """
        settings = dict(
            daily_retention_count=config.DAILY_RETENTION_COUNT,
            daily_retention_period=config.DAILY_RETENTION_PERIOD,
            weekly_retention_count=config.WEEKLY_RETENTION_COUNT,
            weekly_retention_period=config.WEEKLY_RETENTION_PERIOD,
            enforce_retention_period=config.ENFORCE_RETENTION_PERIOD
        )
        settings.update({name: value for name, value in overrides.items() if value is not None})
        return cls.from_hours(
            **settings,
            daily_prefix=config.DAILY_PREFIX,
            weekly_prefix=config.WEEKLY_PREFIX,
            monthly_prefix=config.MONTHLY_PREFIX
        )

    def tiers(self):
        """Rotated tiers in evaluation order: (name, prefix, retention period, retention count)."""
        return [
            ('daily', self.daily_prefix, self.daily_retention_period, self.daily_retention_count),
            ('weekly', self.weekly_prefix, self.weekly_retention_period, self.weekly_retention_count),
        ]


def check_bucket(bucket, bucket_dir=''):
    """Validate a bucket name and optional directory prefix before any store access."""
    if not bucket:
        raise ConfigurationError("invalid bucket specified, bucket must be specified")
    check_bucket_dir(bucket_dir)


def check_bucket_dir(bucket_dir):
    if bucket_dir and not bucket_dir.endswith('/'):
        raise ConfigurationError("expected bucket dir to have trailing slash")


@dataclass
class UploadObject:
    """A local file to be uploaded to the object store"""
    path_to_file: str
    s3_file_name: str
    bucket: str
    bucket_dir: str = ''
    timeout: timedelta = field(default_factory=lambda: timedelta(seconds=Config.TIMEOUT))
    num_workers: int = Config.CONCURRENT_WORKERS
    part_size: int = Config.PART_SIZE  # MiB
    manipulate: bool = True  # False uploads the name verbatim, outside GFS naming

    def validate(self):
        """
        Check upload parameters before any network call.

        Raises:
            ConfigurationError: If any parameter is invalid
        """
        check_bucket_dir(self.bucket_dir)
        if not self.s3_file_name:
            raise ConfigurationError("s3 file name should not be empty")
        if self.num_workers < 1:
            raise ConfigurationError("concurrent workers should not be less than 1")
        if not self.path_to_file:
            raise ConfigurationError("path to file should not be empty and must include the full path to the file")
        if not self.bucket:
            raise ConfigurationError("invalid bucket specified, bucket must be specified")
        if self.timeout < timedelta(0):
            raise ConfigurationError("timeout must not be less than 0")
        if self.part_size < MIN_PART_SIZE_MB:
            raise ConfigurationError(f"part size must not be less than {MIN_PART_SIZE_MB} MiB")

    @property
    def part_size_bytes(self):
        return self.part_size * 1024 * 1024

    def __repr__(self):
        return f'<UploadObject {self.path_to_file} -> {self.bucket}/{self.bucket_dir}{self.s3_file_name}>'


@dataclass
class DownloadObject:
    """An object in the store to be written to a local path"""
    download_location: str
    s3_file_key: str
    bucket: str
    bucket_dir: str = ''
    num_workers: int = Config.CONCURRENT_WORKERS
    part_size: int = Config.PART_SIZE  # MiB

    @property
    def key(self):
        return f'{self.bucket_dir}{self.s3_file_key}'

    @property
    def part_size_bytes(self):
        return self.part_size * 1024 * 1024

    def validate(self):
        check_bucket_dir(self.bucket_dir)
        if not self.s3_file_key:
            raise ConfigurationError("s3 file key should not be empty")
        if not self.download_location:
            raise ConfigurationError("download location should not be empty")
        if not self.bucket:
            raise ConfigurationError("invalid bucket specified, bucket must be specified")
        if self.num_workers < 1:
            raise ConfigurationError("concurrent workers should not be less than 1")
        if self.part_size < MIN_PART_SIZE_MB:
            raise ConfigurationError(f"part size must not be less than {MIN_PART_SIZE_MB} MiB")

    def __repr__(self):
        return f'<DownloadObject {self.bucket}/{self.key} -> {self.download_location}>'
