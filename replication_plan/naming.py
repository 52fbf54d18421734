"""
Naming scheme for the archive and its replicas.

Replica buckets and replica key aliases are created asynchronously by the
StackSet in other regions, so the primary stack can only refer to them by
name. Every such name is derived here and nowhere else; the replica template
(archive_constructs/replication.yml) follows the same convention.
"""

import re

from replication_plan.errors import ConfigurationError

# S3 bucket names: 3-63 chars, lowercase letters, digits, dots and hyphens
_BUCKET_NAME = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_REGION = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d+$")
MAX_BUCKET_NAME_LENGTH = 63


def bucket_arn(bucket_name: str) -> str:
    return f"arn:aws:s3:::{bucket_name}"


def objects_arn(bucket_name: str, pattern: str = "*") -> str:
    return f"{bucket_arn(bucket_name)}/{pattern}"


def replica_bucket_name(bucket_name: str, region: str) -> str:
    return f"{bucket_name}-replication-{region}"


def replica_bucket_arn(bucket_name: str, region: str) -> str:
    return bucket_arn(replica_bucket_name(bucket_name, region))


def replica_objects_arn(bucket_name: str, region: str) -> str:
    return objects_arn(replica_bucket_name(bucket_name, region))


def replica_key_alias(bucket_name: str) -> str:
    """Alias of the replica key; identical in every region."""
    return f"{bucket_name}/replication"


def replica_key_alias_arn(bucket_name: str, region: str, account: str) -> str:
    return f"arn:aws:kms:{region}:{account}:alias/{replica_key_alias(bucket_name)}"


def primary_key_alias(bucket_name: str) -> str:
    return f"alias/{bucket_name}"


def stack_set_name(bucket_name: str) -> str:
    return f"{bucket_name}-replication"


def statement_sid(prefix: str, region: str = None) -> str:
    """
    IAM statement ids only allow alphanumerics, so 'eu-west-1' becomes 'EuWest1'.
    """
    if region is None:
        return prefix
    return prefix + "".join(part.capitalize() for part in region.split("-"))


def validate_bucket_name(bucket_name: str) -> None:
    if not _BUCKET_NAME.match(bucket_name or ""):
        raise ConfigurationError(f"Invalid bucket name {bucket_name!r}")


def validate_region(region: str) -> None:
    if not isinstance(region, str) or not _REGION.match(region):
        raise ConfigurationError(f"Invalid region identifier {region!r}")


def validate_regions(bucket_name: str, regions) -> None:
    """
    Check the target regions of a plan.

    The list must be non-empty and free of duplicates, since the position of
    a region is its replication rule priority. Each replica bucket name must
    also be a valid bucket name on its own.
    """
    regions = list(regions)
    if not regions:
        raise ConfigurationError(
            f"Replication region list for bucket {bucket_name!r} is empty"
        )

    seen = set()
    for region in regions:
        validate_region(region)
        if region in seen:
            raise ConfigurationError(
                f"Region {region!r} appears more than once in {regions}; "
                "replication rule priorities would collide"
            )
        seen.add(region)

        replica = replica_bucket_name(bucket_name, region)
        if len(replica) > MAX_BUCKET_NAME_LENGTH:
            raise ConfigurationError(
                f"Replica bucket name {replica!r} exceeds {MAX_BUCKET_NAME_LENGTH} characters"
            )
