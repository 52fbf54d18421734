import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence

from config.environments import ArchiveConfig
from replication_plan import naming, permissions
from replication_plan.errors import ConfigurationError, DependencyOrderingError
from replication_plan.graph import Node, NodeKind, PlanGraph, Ref

logger = logging.getLogger(__name__)

KEY = "Key"
KEY_ALIAS = "KeyAlias"
BUCKET = "Bucket"
REPLICATION_ROLE = "ReplicationRole"
EXECUTION_ROLE = "StackSetExecutionRole"
ADMIN_ROLE = "StackSetAdminRole"
STACK_SET = "StackSet"
REPLICATION_RULES = "ReplicationRules"

S3_SERVICE = "s3.amazonaws.com"
CLOUDFORMATION_SERVICE = "cloudformation.amazonaws.com"

BLOCK_ALL_PUBLIC_ACCESS: Dict[str, bool] = {
    "block_public_acls": True,
    "block_public_policy": True,
    "ignore_public_acls": True,
    "restrict_public_buckets": True,
}


class PlanState(IntEnum):
    NEW = 0
    KEY_PROVISIONED = 1
    PRIMARY_CREATED = 2
    DENY_POLICIES_ATTACHED = 3
    ORCHESTRATION_ROLES_CREATED = 4
    REPLICA_SETS_REQUESTED = 5
    PERMISSIONS_GRANTED = 6
    REPLICATION_RULES_ATTACHED = 7


@dataclass(frozen=True)
class ReplicationRule:
    region: str
    destination: str
    replica_kms_key_id: str
    priority: int
    status: str = "Enabled"
    delete_marker_replication: bool = True
    sse_kms_encrypted_objects: bool = True
    storage_class: Optional[str] = None

    @property
    def id(self) -> str:
        return self.region

    def to_json(self) -> Dict[str, Any]:
        destination: Dict[str, Any] = {
            "Bucket": self.destination,
            "EncryptionConfiguration": {"ReplicaKmsKeyID": self.replica_kms_key_id},
        }
        if self.storage_class:
            destination["StorageClass"] = self.storage_class
        return {
            "Id": self.id,
            "Priority": self.priority,
            "Status": self.status,
            "Filter": {"Prefix": ""},
            "DeleteMarkerReplication": {
                "Status": "Enabled" if self.delete_marker_replication else "Disabled"
            },
            "SourceSelectionCriteria": {
                "SseKmsEncryptedObjects": {
                    "Status": "Enabled" if self.sse_kms_encrypted_objects else "Disabled"
                }
            },
            "Destination": destination,
        }


def replication_rules(
    bucket_name: str,
    regions: Sequence[str],
    account: str,
    storage_class: Optional[str] = None,
) -> List[ReplicationRule]:
    """One rule per region; the priority of a rule is its position in regions."""
    return [
        ReplicationRule(
            region=region,
            destination=naming.replica_bucket_arn(bucket_name, region),
            replica_kms_key_id=naming.replica_key_alias_arn(bucket_name, region, account),
            priority=index,
            storage_class=storage_class,
        )
        for index, region in enumerate(regions)
    ]


class ReplicationPlanBuilder:
    """
    Builds the plan graph of a replicated archive bucket.

    The steps must run in the order of PlanState; each one leaves nodes the
    next one depends on. build() runs them all and returns the frozen graph.
    """

    def __init__(self, config: ArchiveConfig) -> None:
        self.config = config
        self.graph = PlanGraph()
        self.state = PlanState.NEW
        self.admitted_request: Optional[str] = None

    @property
    def regions(self) -> List[str]:
        return list(self.config.replications)

    def validate(self) -> None:
        config = self.config
        naming.validate_bucket_name(config.bucket_name)
        if not config.account:
            raise ConfigurationError(
                f"No account configured for bucket {config.bucket_name!r}; "
                "replica ARNs cannot be derived in an environment agnostic plan"
            )
        naming.validate_region(config.region)
        naming.validate_regions(config.bucket_name, config.replications)

    def build(self) -> PlanGraph:
        self.provision_key()
        self.create_primary()
        self.attach_deny_policies()
        self.create_orchestration_roles()
        self.request_replica_sets()
        self.grant_permissions()
        self.attach_replication_rules()
        return self.graph.freeze()

    def _enter(self, target: PlanState) -> None:
        expected = PlanState(target - 1)
        if self.state != expected:
            raise DependencyOrderingError(
                f"Cannot enter {target.name} from {self.state.name}; "
                f"{expected.name} must come first"
            )

    def _add_statements(
        self,
        owner: str,
        statements: Sequence[permissions.PolicyStatement],
        depends_on: Sequence[str] = (),
    ) -> List[str]:
        ids = []
        for statement in statements:
            node = self.graph.add_node(
                Node(
                    id=f"{owner}/Policy/{statement.sid}",
                    kind=NodeKind.POLICY_STATEMENT,
                    properties={"attached_to": owner, "statement": statement},
                ),
                depends_on=[owner, *depends_on],
            )
            ids.append(node.id)
        return ids

    def provision_key(self) -> None:
        self._enter(PlanState.KEY_PROVISIONED)
        self.validate()
        self.graph.add_node(
            Node(
                KEY,
                NodeKind.KEY,
                {
                    "description": f"Encryption key of the {self.config.bucket_name} archive",
                    "retention": self.config.retention,
                },
            )
        )
        self.graph.add_node(
            Node(
                KEY_ALIAS,
                NodeKind.KEY_ALIAS,
                {"key": KEY, "alias_name": naming.primary_key_alias(self.config.bucket_name)},
            ),
            depends_on=[KEY],
        )
        logger.info("Key %s planned", naming.primary_key_alias(self.config.bucket_name))
        self.state = PlanState.KEY_PROVISIONED

    def create_primary(self) -> None:
        self._enter(PlanState.PRIMARY_CREATED)
        self.graph.add_node(
            Node(
                BUCKET,
                NodeKind.BUCKET,
                {
                    "bucket_name": self.config.bucket_name,
                    "encryption": "aws:kms",
                    "encryption_key": Ref(KEY_ALIAS, "arn"),
                    "bucket_key_enabled": True,
                    # replication requires versioning
                    "versioned": True,
                    "block_public_access": dict(BLOCK_ALL_PUBLIC_ACCESS),
                    "object_ownership": "BucketOwnerEnforced",
                    "retention": self.config.retention,
                },
            ),
            depends_on=[KEY, KEY_ALIAS],
        )
        logger.info(
            "Bucket %s planned with retention %s",
            self.config.bucket_name,
            self.config.retention.value,
        )
        self.state = PlanState.PRIMARY_CREATED

    def attach_deny_policies(self) -> None:
        self._enter(PlanState.DENY_POLICIES_ATTACHED)
        self._add_statements(
            BUCKET, permissions.deny_destruction_statements(self.config.bucket_name)
        )
        self.state = PlanState.DENY_POLICIES_ATTACHED

    def create_orchestration_roles(self) -> None:
        self._enter(PlanState.ORCHESTRATION_ROLES_CREATED)
        config = self.config
        self.graph.add_node(
            Node(
                REPLICATION_ROLE,
                NodeKind.ROLE,
                {"assumed_by": {"Service": S3_SERVICE}, "path": "/service-role/"},
            )
        )
        self.graph.add_node(
            Node(
                EXECUTION_ROLE,
                NodeKind.ROLE,
                {
                    "assumed_by": {"AWS": f"arn:aws:iam::{config.account}:root"},
                    "description": "This role executes the stack set for this bucket",
                },
            )
        )
        self._add_statements(
            EXECUTION_ROLE,
            permissions.stack_set_execution_statements(
                config.bucket_name, config.region, config.account
            ),
        )
        self.graph.add_node(
            Node(
                ADMIN_ROLE,
                NodeKind.ROLE,
                {
                    "assumed_by": {"Service": CLOUDFORMATION_SERVICE},
                    "description": "This role is Admin for the stackSet",
                },
            ),
            depends_on=[EXECUTION_ROLE],
        )
        self._add_statements(
            ADMIN_ROLE,
            permissions.stack_set_admin_statements(Ref(EXECUTION_ROLE, "arn")),
            depends_on=[EXECUTION_ROLE],
        )
        logger.info("Replication and StackSet roles planned")
        self.state = PlanState.ORCHESTRATION_ROLES_CREATED

    def request_replica_sets(self) -> None:
        self._enter(PlanState.REPLICA_SETS_REQUESTED)
        config = self.config
        execution_statements = [
            n.id for n in self.graph.attached_to(EXECUTION_ROLE)
        ]
        self.graph.add_node(
            Node(
                STACK_SET,
                NodeKind.STACK_SET,
                {
                    "stack_set_name": naming.stack_set_name(config.bucket_name),
                    "permission_model": "SELF_MANAGED",
                    "administration_role": Ref(ADMIN_ROLE, "arn"),
                    "execution_role_name": Ref(EXECUTION_ROLE, "name"),
                    "region_concurrency": "PARALLEL",
                    "regions": tuple(self.regions),
                    "accounts": (config.account,),
                    "parameters": {
                        "SourceBucket": config.bucket_name,
                        "ReplicationRole": Ref(REPLICATION_ROLE, "arn"),
                    },
                    "template": config.replica_template,
                },
            ),
            depends_on=[ADMIN_ROLE, EXECUTION_ROLE, REPLICATION_ROLE, *execution_statements],
        )
        self.admitted_request = STACK_SET
        logger.info(
            "StackSet %s requested for regions %s",
            naming.stack_set_name(config.bucket_name),
            ", ".join(self.regions),
        )
        self.state = PlanState.REPLICA_SETS_REQUESTED

    def grant_permissions(self) -> None:
        self._enter(PlanState.PERMISSIONS_GRANTED)
        config = self.config
        statements = permissions.replication_statements(
            config.bucket_name, Ref(KEY, "arn"), self.regions, config.account
        )
        self._add_statements(REPLICATION_ROLE, statements, depends_on=[KEY])
        self._add_statements(
            KEY,
            [permissions.key_decrypt_grant(Ref(REPLICATION_ROLE, "arn"))],
            depends_on=[REPLICATION_ROLE],
        )
        logger.info("Granted %d statements to %s", len(statements), REPLICATION_ROLE)
        self.state = PlanState.PERMISSIONS_GRANTED

    def attach_replication_rules(self) -> None:
        if self.admitted_request is None:
            raise DependencyOrderingError(
                "Replication rules cannot be attached before the replica StackSet is requested"
            )
        self._enter(PlanState.REPLICATION_RULES_ATTACHED)
        config = self.config
        rules = replication_rules(
            config.bucket_name,
            self.regions,
            config.account,
            config.destination_storage_class,
        )
        role_statements = [n.id for n in self.graph.attached_to(REPLICATION_ROLE)]
        self.graph.add_node(
            Node(
                REPLICATION_RULES,
                NodeKind.REPLICATION_RULES,
                {
                    "attached_to": BUCKET,
                    "role": Ref(REPLICATION_ROLE, "arn"),
                    "rules": tuple(rules),
                },
            ),
            depends_on=[BUCKET, self.admitted_request, REPLICATION_ROLE, *role_statements],
        )
        logger.info(
            "Replication rules attached to %s: %s",
            config.bucket_name,
            ", ".join(f"{r.id}={r.priority}" for r in rules),
        )
        self.state = PlanState.REPLICATION_RULES_ATTACHED


def build_plan(config: ArchiveConfig) -> PlanGraph:
    return ReplicationPlanBuilder(config).build()
