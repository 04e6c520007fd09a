"""Command line interface: one GFS action per invocation."""

import logging
from datetime import timedelta
from typing import Optional

import typer

from gfsbackup import configure_logging
from gfsbackup.config import Config, ConfigurationError, get_config
from gfsbackup.models import RotationPolicy, UploadObject, DownloadObject
from gfsbackup.backup.executor import BackupExecutor, create_storage
from gfsbackup.backup.storage import StorageError, UploadTimeoutError

logger = logging.getLogger('gfsbackup.cli')

app = typer.Typer(help=__doc__, no_args_is_help=True)

EXIT_FAILURE = 1
EXIT_CONFIGURATION = 2

BUCKET = typer.Option(..., "--bucket", help="The S3 bucket to operate on.")
BUCKET_DIR = typer.Option(
    "", "--bucket-dir",
    help="The directory in the bucket holding the objects. Must include the trailing slash.",
)
PATH_TO_FILE = typer.Option(..., "--path-to-file", help="The full path to the file to upload.")
S3_FILE_NAME = typer.Option(..., "--s3-file-name", help="The name of the file as it should appear in the bucket.")
TIMEOUT = typer.Option(
    None, "--timeout",
    help=f"The timeout to upload the file (seconds, 0 disables). [default: {Config.TIMEOUT}]",
)
WORKERS = typer.Option(
    None, "--concurrent-workers", help=f"Number of transfer threads. [default: {Config.CONCURRENT_WORKERS}]",
)
PART_SIZE = typer.Option(None, "--part-size", help=f"Multipart part size (MiB). [default: {Config.PART_SIZE}]")
DAILY_COUNT = typer.Option(
    None, "--daily-retention-count",
    help=f"The number of daily objects to keep. [default: {Config.DAILY_RETENTION_COUNT}]",
)
DAILY_PERIOD = typer.Option(
    None, "--daily-retention-period",
    help=f"The retention period (hours) a daily object is kept. [default: {Config.DAILY_RETENTION_PERIOD}]",
)
WEEKLY_COUNT = typer.Option(
    None, "--weekly-retention-count",
    help=f"The number of weekly objects to keep. [default: {Config.WEEKLY_RETENTION_COUNT}]",
)
WEEKLY_PERIOD = typer.Option(
    None, "--weekly-retention-period",
    help=f"The retention period (hours) a weekly object is kept. [default: {Config.WEEKLY_RETENTION_PERIOD}]",
)
ENFORCE = typer.Option(
    None, "--enforce-retention-period/--no-enforce-retention-period",
    help="Only rotate objects older than their retention period. [default: enforced]",
)


def _log_args(ctx: typer.Context):
    logger.info(f"Starting gfsbackup {ctx.info_name} with arguments:")
    for name, value in {**ctx.obj['options'], **ctx.params}.items():
        logger.info(f"--{name.replace('_', '-')}={value}")


def _executor(ctx: typer.Context) -> BackupExecutor:
    options = ctx.obj['options']
    try:
        storage = create_storage(
            local_root=options['local_root'],
            region=options['region'],
            profile=options['profile'],
            credentials_file=options['credfile'],
            endpoint_url=options['endpoint_url']
        )
    except StorageError as e:
        _fail(f"Failed to create storage client: {e}", EXIT_FAILURE)
    return BackupExecutor(storage, dry_run=options['dry_run'], poll_interval=ctx.obj['config'].PROGRESS_POLL_INTERVAL)


def _setting(ctx: typer.Context, value, name):
    return value if value is not None else getattr(ctx.obj['config'], name)


def _upload_object(ctx: typer.Context, bucket, path_to_file, s3_file_name, bucket_dir, timeout,
                   concurrent_workers, part_size, manipulate) -> UploadObject:
    return UploadObject(
        path_to_file=path_to_file,
        s3_file_name=s3_file_name,
        bucket=bucket,
        bucket_dir=bucket_dir,
        timeout=timedelta(seconds=_setting(ctx, timeout, 'TIMEOUT')),
        num_workers=_setting(ctx, concurrent_workers, 'CONCURRENT_WORKERS'),
        part_size=_setting(ctx, part_size, 'PART_SIZE'),
        manipulate=manipulate
    )


def _policy(ctx: typer.Context, daily_retention_count, daily_retention_period, weekly_retention_count,
            weekly_retention_period, enforce_retention_period) -> RotationPolicy:
    policy = RotationPolicy.from_config(
        ctx.obj['config'],
        daily_retention_count=daily_retention_count,
        daily_retention_period=daily_retention_period,
        weekly_retention_count=weekly_retention_count,
        weekly_retention_period=weekly_retention_period,
        enforce_retention_period=enforce_retention_period
    )
    if not policy.enforce_retention_period:
        logger.warning("gfsbackup is running with enforce retention period disabled. This may result in "
                       "objects being deleted which have not exceeded the retention period")
    return policy


def _fail(message: str, code: int):
    logger.error(message)
    raise typer.Exit(code=code)


@app.callback()
def main(
    ctx: typer.Context,
    region: str = typer.Option(Config.REGION, "--region", help="The AWS region of the bucket."),
    profile: Optional[str] = typer.Option(Config.PROFILE, "--profile", help="The profile to use from the credential file."),
    credfile: Optional[str] = typer.Option(
        Config.CREDENTIALS_FILE, "--credfile",
        help="The full path to the AWS CLI credential file if environment variables are not used.",
    ),
    endpoint_url: Optional[str] = typer.Option(Config.ENDPOINT_URL, "--endpoint-url", help="Custom S3 endpoint."),
    local_root: Optional[str] = typer.Option(
        None, "--local-root", help="Use a local directory (one sub-directory per bucket) instead of S3.",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Do not upload or delete anything."),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
):
    """GFS backup rotation for S3 buckets."""
    try:
        config = get_config('development' if debug else None)
    except ConfigurationError as e:
        _fail(f"Invalid configuration: {e}", EXIT_CONFIGURATION)
    configure_logging(config)
    ctx.obj = {
        'config': config,
        'options': {
            'region': region,
            'profile': profile,
            'credfile': credfile,
            'endpoint_url': endpoint_url,
            'local_root': local_root,
            'dry_run': dry_run,
        }
    }


@app.command()
def backup(
    ctx: typer.Context,
    bucket: str = BUCKET,
    path_to_file: str = PATH_TO_FILE,
    s3_file_name: str = S3_FILE_NAME,
    bucket_dir: str = BUCKET_DIR,
    timeout: Optional[int] = TIMEOUT,
    concurrent_workers: Optional[int] = WORKERS,
    part_size: Optional[int] = PART_SIZE,
    daily_retention_count: Optional[int] = DAILY_COUNT,
    daily_retention_period: Optional[int] = DAILY_PERIOD,
    weekly_retention_count: Optional[int] = WEEKLY_COUNT,
    weekly_retention_period: Optional[int] = WEEKLY_PERIOD,
    enforce_retention_period: Optional[bool] = ENFORCE,
):
    """Upload the file under its GFS prefix, then rotate."""
    _log_args(ctx)
    try:
        policy = _policy(ctx, daily_retention_count, daily_retention_period, weekly_retention_count,
                         weekly_retention_period, enforce_retention_period)
        upload_object = _upload_object(ctx, bucket, path_to_file, s3_file_name, bucket_dir, timeout,
                                       concurrent_workers, part_size, manipulate=True)
        result = _executor(ctx).backup(upload_object, policy)
    except ConfigurationError as e:
        _fail(f"Invalid configuration: {e}", EXIT_CONFIGURATION)
    except UploadTimeoutError as e:
        _fail(f"Upload timed out. Skipping rotation. Reason: {e}", EXIT_FAILURE)
    except StorageError as e:
        _fail(f"Failed to upload file. Skipping rotation. Reason: {e}", EXIT_FAILURE)

    typer.echo(result['key'])
    for key in result['deleted_keys']:
        typer.echo(f"deleted: {key}")


@app.command()
def upload(
    ctx: typer.Context,
    bucket: str = BUCKET,
    path_to_file: str = PATH_TO_FILE,
    s3_file_name: str = S3_FILE_NAME,
    bucket_dir: str = BUCKET_DIR,
    timeout: Optional[int] = TIMEOUT,
    concurrent_workers: Optional[int] = WORKERS,
    part_size: Optional[int] = PART_SIZE,
):
    """Upload the file verbatim, outside GFS naming."""
    _log_args(ctx)
    try:
        upload_object = _upload_object(ctx, bucket, path_to_file, s3_file_name, bucket_dir, timeout,
                                       concurrent_workers, part_size, manipulate=False)
        key = _executor(ctx).upload(upload_object)
    except ConfigurationError as e:
        _fail(f"Invalid configuration: {e}", EXIT_CONFIGURATION)
    except UploadTimeoutError as e:
        _fail(f"Upload timed out: {e}", EXIT_FAILURE)
    except StorageError as e:
        _fail(f"Failed to upload file. Reason: {e}", EXIT_FAILURE)

    typer.echo(key)


@app.command()
def rotate(
    ctx: typer.Context,
    bucket: str = BUCKET,
    bucket_dir: str = BUCKET_DIR,
    daily_retention_count: Optional[int] = DAILY_COUNT,
    daily_retention_period: Optional[int] = DAILY_PERIOD,
    weekly_retention_count: Optional[int] = WEEKLY_COUNT,
    weekly_retention_period: Optional[int] = WEEKLY_PERIOD,
    enforce_retention_period: Optional[bool] = ENFORCE,
):
    """Rotate the daily and weekly tiers only."""
    _log_args(ctx)
    try:
        policy = _policy(ctx, daily_retention_count, daily_retention_period, weekly_retention_count,
                         weekly_retention_period, enforce_retention_period)
        deleted_keys = _executor(ctx).rotate(bucket, policy, bucket_dir=bucket_dir)
    except ConfigurationError as e:
        _fail(f"Invalid configuration: {e}", EXIT_CONFIGURATION)

    for key in deleted_keys:
        typer.echo(f"deleted: {key}")


@app.command()
def download(
    ctx: typer.Context,
    bucket: str = BUCKET,
    s3_file_key: str = typer.Option(..., "--s3-file-key", help="The key (relative to --bucket-dir) to download."),
    download_location: str = typer.Option(..., "--download-location", help="Local path to write to."),
    bucket_dir: str = BUCKET_DIR,
    concurrent_workers: Optional[int] = WORKERS,
    part_size: Optional[int] = PART_SIZE,
):
    """Download one object."""
    _log_args(ctx)
    try:
        download_object = DownloadObject(
            download_location=download_location,
            s3_file_key=s3_file_key,
            bucket=bucket,
            bucket_dir=bucket_dir,
            num_workers=_setting(ctx, concurrent_workers, 'CONCURRENT_WORKERS'),
            part_size=_setting(ctx, part_size, 'PART_SIZE')
        )
        result = _executor(ctx).download(download_object)
    except ConfigurationError as e:
        _fail(f"Invalid configuration: {e}", EXIT_CONFIGURATION)
    except StorageError as e:
        _fail(f"Failed to download file. Reason: {e}", EXIT_FAILURE)

    typer.echo(f"{result['md5']}  {result['path']}")


@app.command()
def cleanup(
    ctx: typer.Context,
    bucket: str = BUCKET,
):
    """Abort abandoned multipart uploads."""
    _log_args(ctx)
    try:
        aborted = _executor(ctx).cleanup_multipart_uploads(bucket)
    except StorageError as e:
        _fail(f"Failed to clean up multipart uploads. Reason: {e}", EXIT_FAILURE)

    for key in aborted:
        typer.echo(f"aborted: {key}")


if __name__ == '__main__':
    app()
