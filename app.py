#!/usr/bin/env python3
import logging

import aws_cdk as cdk
from stacks.archive_stack import ArchiveStack
from config.environments import ArchiveConfig

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

app = cdk.App()

# Defaults to PRODUCTION_CONFIG, overridable with -c bucketName=... -c replications=...
config = ArchiveConfig.from_context(app)

# Archive bucket in the home region, replicas fanned out by a StackSet
archive_stack = ArchiveStack(
    app,
    "Archive",
    config=config,
    env=cdk.Environment(region=config.region, account=config.account),
    description=f"Archive bucket {config.bucket_name} replicated to {', '.join(config.replications)}",
)

app.synth()
