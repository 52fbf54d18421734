import logging
from pathlib import Path
from typing import Dict

from aws_cdk import (
    aws_s3 as s3,
    aws_iam as iam,
    aws_kms as kms,
    CfnResource,
    CfnStackSet,
    RemovalPolicy,
    Stack,
    Token,
)
from constructs import Construct

from config.environments import Retention
from replication_plan.errors import ConfigurationError, ExternalProvisioningError
from replication_plan.graph import Node, NodeKind, PlanGraph, Ref
from replication_plan.permissions import ANY_PRINCIPAL, DENY, PolicyStatement

logger = logging.getLogger(__name__)

DEFAULT_REPLICA_TEMPLATE = Path(__file__).with_name("replication.yml")

_REMOVAL_POLICIES = {
    Retention.RETAIN: RemovalPolicy.RETAIN,
    Retention.DESTROY: RemovalPolicy.DESTROY,
}

# Ref attribute -> construct attribute, per node kind
_ATTRIBUTES = {
    "arn": {
        NodeKind.KEY: "key_arn",
        NodeKind.KEY_ALIAS: "alias_arn",
        NodeKind.BUCKET: "bucket_arn",
        NodeKind.ROLE: "role_arn",
    },
    "name": {
        NodeKind.KEY_ALIAS: "alias_name",
        NodeKind.BUCKET: "bucket_name",
        NodeKind.ROLE: "role_name",
    },
    "key_id": {
        NodeKind.KEY: "key_id",
    },
}


class ReplicatedBucket(Construct):
    """
    Realizes a replication plan graph as CloudFormation resources.

    Nodes are created in dependency order and every edge of the plan becomes
    a DependsOn between the CloudFormation resources backing the two nodes.
    The stack must know its account and region.
    """

    def __init__(self, scope: Construct, construct_id: str, plan: PlanGraph, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        if Token.is_unresolved(Stack.of(self).account) or Token.is_unresolved(
            Stack.of(self).region
        ):
            raise ConfigurationError(
                "ReplicatedBucket cannot be used in an environment agnostic stack"
            )

        self.plan = plan
        self._nodes: Dict[str, Construct] = {}
        self._resources: Dict[str, CfnResource] = {}

        renderers = {
            NodeKind.KEY: self._create_key,
            NodeKind.KEY_ALIAS: self._create_alias,
            NodeKind.BUCKET: self._create_bucket,
            NodeKind.ROLE: self._create_role,
            NodeKind.POLICY_STATEMENT: self._attach_statement,
            NodeKind.STACK_SET: self._create_stack_set,
            NodeKind.REPLICATION_RULES: self._attach_replication_rules,
        }
        for node in plan.topological_order():
            renderer = renderers.get(node.kind)
            if renderer is None:
                raise ExternalProvisioningError(
                    f"Node {node.id!r} of kind {node.kind} cannot be provisioned"
                )
            renderer(node)

        self._add_dependencies()

        self.source_bucket: s3.Bucket = self._find(NodeKind.BUCKET)
        self.encryption_key: kms.Key = self._find(NodeKind.KEY)
        self.stack_set: CfnStackSet = self._find(NodeKind.STACK_SET)

    def _find(self, kind: NodeKind):
        nodes = self.plan.nodes(kind)
        return self._nodes[nodes[0].id] if nodes else None

    def _resolve(self, value):
        if not isinstance(value, Ref):
            return value
        kind = self.plan.node(value.node_id).kind
        attribute = _ATTRIBUTES[value.attribute][kind]
        return getattr(self._nodes[value.node_id], attribute)

    def _principal(self, value) -> iam.IPrincipal:
        if value == ANY_PRINCIPAL:
            return iam.AnyPrincipal()
        return iam.ArnPrincipal(self._resolve(value))

    def _create_key(self, node: Node) -> None:
        key = kms.Key(self, node.id,
            description=node.get("description"),
            removal_policy=_REMOVAL_POLICIES[node.get("retention")]
        )
        self._nodes[node.id] = key
        self._resources[node.id] = key.node.default_child

    def _create_alias(self, node: Node) -> None:
        key: kms.Key = self._nodes[node.get("key")]
        alias = key.add_alias(node.get("alias_name"))
        self._nodes[node.id] = alias
        self._resources[node.id] = alias.node.default_child

    def _create_bucket(self, node: Node) -> None:
        bucket = s3.Bucket(self, node.id,
            bucket_name=node.get("bucket_name"),
            encryption=s3.BucketEncryption.KMS,
            encryption_key=self._nodes[node.get("encryption_key").node_id],
            bucket_key_enabled=node.get("bucket_key_enabled"),
            versioned=True,
            block_public_access=s3.BlockPublicAccess(**node.get("block_public_access")),
            object_ownership=s3.ObjectOwnership.BUCKET_OWNER_ENFORCED,
            removal_policy=_REMOVAL_POLICIES[node.get("retention")]
        )
        self._nodes[node.id] = bucket
        self._resources[node.id] = bucket.node.default_child

    def _create_role(self, node: Node) -> None:
        assumed_by = node.get("assumed_by")
        if "Service" in assumed_by:
            principal = iam.ServicePrincipal(assumed_by["Service"])
        else:
            principal = iam.ArnPrincipal(assumed_by["AWS"])

        role = iam.Role(self, node.id,
            assumed_by=principal,
            path=node.get("path"),
            description=node.get("description")
        )
        self._nodes[node.id] = role
        self._resources[node.id] = role.node.default_child

    def _to_cdk_statement(self, statement: PolicyStatement) -> iam.PolicyStatement:
        return iam.PolicyStatement(
            sid=statement.sid,
            effect=iam.Effect.DENY if statement.effect == DENY else iam.Effect.ALLOW,
            actions=list(statement.actions),
            resources=[self._resolve(r) for r in statement.resources],
            principals=[self._principal(p) for p in statement.principals] or None,
        )

    def _attach_statement(self, node: Node) -> None:
        owner_id = node.get("attached_to")
        owner = self._nodes[owner_id]
        statement = self._to_cdk_statement(node.get("statement"))

        if isinstance(owner, iam.Role):
            owner.add_to_policy(statement)
            policy = owner.node.find_child("DefaultPolicy")
            resource = policy.node.default_child
        elif isinstance(owner, s3.Bucket):
            owner.add_to_resource_policy(statement)
            resource = owner.policy.node.default_child
        elif isinstance(owner, kms.Key):
            owner.add_to_resource_policy(statement)
            resource = self._resources[owner_id]
        else:
            raise ExternalProvisioningError(
                f"Cannot attach policy statement {node.id!r} to {owner_id!r}"
            )
        self._nodes[node.id] = owner
        self._resources[node.id] = resource

    def _create_stack_set(self, node: Node) -> None:
        template = Path(node.get("template") or DEFAULT_REPLICA_TEMPLATE)
        parameters = [
            CfnStackSet.ParameterProperty(
                parameter_key=key,
                parameter_value=self._resolve(value),
            )
            for key, value in node.get("parameters").items()
        ]

        stack_set = CfnStackSet(self, node.id,
            stack_set_name=node.get("stack_set_name"),
            permission_model=node.get("permission_model"),
            administration_role_arn=self._resolve(node.get("administration_role")),
            execution_role_name=self._resolve(node.get("execution_role_name")),
            operation_preferences=CfnStackSet.OperationPreferencesProperty(
                region_concurrency_type=node.get("region_concurrency"),
            ),
            parameters=parameters,
            stack_instances_group=[
                CfnStackSet.StackInstancesProperty(
                    regions=list(node.get("regions")),
                    deployment_targets=CfnStackSet.DeploymentTargetsProperty(
                        accounts=list(node.get("accounts")),
                    ),
                )
            ],
            template_body=template.read_text()
        )
        logger.info("StackSet %s uses template %s", node.get("stack_set_name"), template)
        self._nodes[node.id] = stack_set
        self._resources[node.id] = stack_set

    def _attach_replication_rules(self, node: Node) -> None:
        bucket_id = node.get("attached_to")
        cfn_bucket: s3.CfnBucket = self._resources[bucket_id]
        rules = [
            s3.CfnBucket.ReplicationRuleProperty(
                id=rule.id,
                priority=rule.priority,
                status=rule.status,
                filter=s3.CfnBucket.ReplicationRuleFilterProperty(prefix=""),
                delete_marker_replication=s3.CfnBucket.DeleteMarkerReplicationProperty(
                    status="Enabled" if rule.delete_marker_replication else "Disabled"
                ),
                source_selection_criteria=s3.CfnBucket.SourceSelectionCriteriaProperty(
                    sse_kms_encrypted_objects=s3.CfnBucket.SseKmsEncryptedObjectsProperty(
                        status="Enabled" if rule.sse_kms_encrypted_objects else "Disabled"
                    )
                ),
                destination=s3.CfnBucket.ReplicationDestinationProperty(
                    bucket=rule.destination,
                    encryption_configuration=s3.CfnBucket.EncryptionConfigurationProperty(
                        replica_kms_key_id=rule.replica_kms_key_id
                    ),
                    storage_class=rule.storage_class,
                ),
            )
            for rule in node.get("rules")
        ]
        cfn_bucket.replication_configuration = s3.CfnBucket.ReplicationConfigurationProperty(
            role=self._resolve(node.get("role")),
            rules=rules,
        )
        self._nodes[node.id] = self._nodes[bucket_id]
        self._resources[node.id] = cfn_bucket

    def _add_dependencies(self) -> None:
        for dependent, dependency in self.plan.edges:
            source = self._resources[dependent]
            target = self._resources[dependency]
            if source is not target:
                source.add_resource_dependency(target)
