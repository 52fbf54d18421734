import logging

from aws_cdk import (
    Stack,
    Tags
)
from constructs import Construct
from archive_constructs.replicated_bucket import ReplicatedBucket
from config.environments import ArchiveConfig
from replication_plan.builder import ReplicationPlanBuilder

logger = logging.getLogger(__name__)


class ArchiveStack(Stack):
    def __init__(self, scope: Construct, construct_id: str,
                 config: ArchiveConfig,
                 **kwargs) -> None:
        kwargs.setdefault("stack_name", config.stack_name)
        kwargs.setdefault("termination_protection", config.termination_protection)
        super().__init__(scope, construct_id, **kwargs)

        # Plan first; configuration errors surface before any construct exists
        self.plan = ReplicationPlanBuilder(config).build()
        logger.info("Plan for %s has %d nodes", config.bucket_name, len(self.plan))

        # Primary bucket, replication roles and replica StackSet
        self.replicated_bucket = ReplicatedBucket(self, "ReplicatedBucket",
            plan=self.plan
        )
        self.source_bucket = self.replicated_bucket.source_bucket

        # Tags
        for key, value in config.tags.items():
            Tags.of(self).add(key, value)
