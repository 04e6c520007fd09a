"""
Key classification and naming for GFS backups.

Every uploaded key carries its tier as a literal prefix. Rotation never
recomputes the tier, it only searches by prefix, so the classification rule
used at upload time is what decides which tier an object belongs to.
"""

from datetime import datetime, timezone

KEY_TIMESTAMP_FORMAT = '%Y%m%dT%H%M%S'

MONDAY = 0


def classify(policy, timestamp: datetime) -> str:
    """
    Return the tier prefix for a backup taken at ``timestamp``.

    The calendar day is read in the timezone the timestamp carries, so callers
    should pass an aware UTC datetime.

    Args:
        policy: RotationPolicy holding the tier prefixes
        timestamp: Time of the backup

    Returns:
        Monthly prefix on the first day of a month, weekly prefix on a Monday,
        daily prefix otherwise
    """
    if timestamp.day == 1:
        return policy.monthly_prefix

    if timestamp.weekday() == MONDAY:
        return policy.weekly_prefix

    return policy.daily_prefix


def build_key_name(upload_object, prefix: str, upload_time: datetime = None) -> str:
    """
    Build the destination key for an upload.

    With ``manipulate`` set the key is ``{bucket_dir}{prefix}{name}_{YYYYMMDDThhmmss}``,
    otherwise the name is used verbatim under the bucket dir.
    """
    if not upload_object.manipulate:
        return f"{upload_object.bucket_dir}{upload_object.s3_file_name}"

    if upload_time is None:
        upload_time = datetime.now(timezone.utc)
    stamp = upload_time.strftime(KEY_TIMESTAMP_FORMAT)
    return f"{upload_object.bucket_dir}{prefix}{upload_object.s3_file_name}_{stamp}"


def has_prefix(key: str, prefix: str) -> bool:
    return key.startswith(prefix)
