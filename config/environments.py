import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional, Tuple

from replication_plan.errors import ConfigurationError


class Retention(str, Enum):
    RETAIN = "retain"
    DESTROY = "destroy"


@dataclass(frozen=True)
class ArchiveConfig:
    bucket_name: str
    region: str
    replications: Tuple[str, ...]
    account: Optional[str] = None
    destination_storage_class: Optional[str] = None
    retention: Retention = Retention.RETAIN
    termination_protection: bool = False
    tags: Dict[str, str] = field(default_factory=dict)
    replica_template: Optional[str] = None

    @property
    def stack_name(self) -> str:
        return f"{self.bucket_name}-archive"

    @classmethod
    def from_context(cls, scope, base: "ArchiveConfig" = None) -> "ArchiveConfig":
        """
        Overlay CDK context values on top of a base configuration.
        Usage: cdk synth -c bucketName=wese -c replications=eu-west-1,eu-north-1
        """
        base = base or PRODUCTION_CONFIG
        ctx = scope.node.try_get_context

        overrides = {}
        if ctx("bucketName"):
            overrides["bucket_name"] = ctx("bucketName")
        if ctx("region"):
            overrides["region"] = ctx("region")
        if ctx("replications") is not None:
            overrides["replications"] = _as_regions(ctx("replications"))
        if ctx("destinationStorageClass"):
            overrides["destination_storage_class"] = ctx("destinationStorageClass")
        if ctx("retention"):
            overrides["retention"] = _as_retention(ctx("retention"))
        if ctx("terminationProtection") is not None:
            overrides["termination_protection"] = _as_bool(ctx("terminationProtection"))
        if ctx("tags"):
            overrides["tags"] = _as_tags(ctx("tags"))
        if ctx("replicaTemplate"):
            overrides["replica_template"] = ctx("replicaTemplate")

        account = ctx("account") or base.account or os.getenv("CDK_DEFAULT_ACCOUNT")
        return replace(base, account=account, **overrides)


def _as_regions(raw) -> Tuple[str, ...]:
    if isinstance(raw, str):
        return tuple(r.strip() for r in raw.split(",") if r.strip())
    return tuple(raw)


def _as_retention(raw) -> Retention:
    try:
        return Retention(str(raw).strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Invalid retention {raw!r}; expected one of {[r.value for r in Retention]}"
        ) from None


def _as_tags(raw) -> Dict[str, str]:
    """
    Tags arrive as a JSON object from cdk.json or as "key=value,key=value"
    from the command line.
    """
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    if not isinstance(raw, str):
        raise ConfigurationError(f"Invalid tags {raw!r}; expected key=value pairs")

    tags = {}
    for pair in filter(None, (p.strip() for p in raw.split(","))):
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(
                f"Invalid tag {pair!r} in tags {raw!r}; expected key=value"
            )
        tags[key.strip()] = value.strip()
    return tags


def _as_bool(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes")


# Archive in Frankfurt, replicated to Ireland and Stockholm
PRODUCTION_CONFIG = ArchiveConfig(
    bucket_name="wese",
    region="eu-central-1",
    replications=("eu-west-1", "eu-north-1"),
    retention=Retention.RETAIN,
    termination_protection=False,
    tags={
        "stack": "replication",
        "delete": "me",
    },
)
