"""
Policy statements for the archive bucket and the roles around it.

All functions are pure: identical arguments give structurally identical
statements, in the same order. Attaching them to a role, bucket or key is up
to the caller.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from replication_plan import naming
from replication_plan.graph import Ref

ALLOW = "Allow"
DENY = "Deny"
ANY_PRINCIPAL = "*"

Resource = Union[str, Ref]


@dataclass(frozen=True)
class PolicyStatement:
    actions: Tuple[str, ...]
    resources: Tuple[Resource, ...]
    effect: str = ALLOW
    sid: Optional[str] = None
    principals: Tuple[Resource, ...] = ()

    def to_json(self) -> Dict[str, Any]:
        statement: Dict[str, Any] = {}
        if self.sid:
            statement["Sid"] = self.sid
        statement["Effect"] = self.effect
        if self.principals:
            if self.principals == (ANY_PRINCIPAL,):
                statement["Principal"] = ANY_PRINCIPAL
            else:
                statement["Principal"] = {"AWS": [_json(p) for p in self.principals]}
        statement["Action"] = list(self.actions)
        statement["Resource"] = [_json(r) for r in self.resources]
        return statement


def _json(value: Resource):
    return value.to_json() if isinstance(value, Ref) else value


def deny_destruction_statements(bucket_name: str) -> List[PolicyStatement]:
    """Deny deleting the bucket or any object version, whoever asks."""
    return [
        PolicyStatement(
            sid="DenyDeleteBucket",
            effect=DENY,
            actions=("s3:DeleteBucket",),
            resources=(naming.bucket_arn(bucket_name),),
            principals=(ANY_PRINCIPAL,),
        ),
        PolicyStatement(
            sid="DenyDeleteObjectVersion",
            effect=DENY,
            actions=("s3:DeleteObjectVersion",),
            resources=(naming.objects_arn(bucket_name),),
            principals=(ANY_PRINCIPAL,),
        ),
    ]


def replication_statements(
    bucket_name: str,
    key: Resource,
    regions: Sequence[str],
    account: str,
) -> List[PolicyStatement]:
    """
    Grants for the role S3 assumes to replicate the archive.

    Read access is limited to the source bucket and its key. Write access is
    emitted per region, so every statement names the replica bucket or replica
    key alias of exactly one region.

    Raises:
        ConfigurationError: if regions is empty, contains a duplicate or an
            invalid region identifier.
    """
    naming.validate_regions(bucket_name, regions)

    statements = [
        PolicyStatement(
            sid="ReadReplicationConfiguration",
            actions=("s3:GetReplicationConfiguration", "s3:ListBucket"),
            resources=(naming.bucket_arn(bucket_name),),
        ),
        PolicyStatement(
            sid="ReadSourceObjectVersions",
            actions=(
                "s3:GetObjectVersion",
                "s3:GetObjectVersionAcl",
                "s3:GetObjectVersionForReplication",
                "s3:GetObjectVersionTagging",
            ),
            resources=(naming.objects_arn(bucket_name),),
        ),
        PolicyStatement(
            sid="DecryptSource",
            actions=("kms:Decrypt",),
            resources=(key,),
        ),
    ]

    for region in regions:
        statements.extend(
            [
                PolicyStatement(
                    sid=naming.statement_sid("Encrypt", region),
                    actions=("kms:Encrypt",),
                    resources=(naming.replica_key_alias_arn(bucket_name, region, account),),
                ),
                PolicyStatement(
                    sid=naming.statement_sid("Replicate", region),
                    actions=("s3:ReplicateDelete", "s3:ReplicateObject", "s3:ReplicateTags"),
                    resources=(naming.replica_objects_arn(bucket_name, region),),
                ),
                PolicyStatement(
                    sid=naming.statement_sid("ManageReplica", region),
                    actions=("s3:List*", "s3:GetBucketVersioning", "s3:PutBucketVersioning"),
                    resources=(naming.replica_bucket_arn(bucket_name, region),),
                ),
            ]
        )
    return statements


def key_decrypt_grant(role: Resource) -> PolicyStatement:
    """Key policy statement letting the replication role decrypt source objects"""
    return PolicyStatement(
        sid="AllowReplicationDecrypt",
        actions=("kms:Decrypt",),
        resources=("*",),
        principals=(role,),
    )


def stack_set_admin_statements(execution_role: Resource) -> List[PolicyStatement]:
    # The admin role only ever assumes the execution role
    return [
        PolicyStatement(
            sid="AssumeExecutionRole",
            actions=("sts:AssumeRole",),
            resources=(execution_role,),
        )
    ]


def stack_set_execution_statements(
    bucket_name: str, region: str, account: str
) -> List[PolicyStatement]:
    """
    Rights the StackSet execution role needs to create replicas in any region.
    KMS keys get created by the template so their ARNs are unknown here.
    """
    name = naming.stack_set_name(bucket_name)
    return [
        PolicyStatement(
            sid="AllowKMS",
            actions=("kms:*",),
            resources=("*",),
        ),
        PolicyStatement(
            sid="AllowS3",
            actions=("s3:*",),
            resources=(naming.bucket_arn(f"{name}-*"),),
        ),
        PolicyStatement(
            sid="CFPermissions",
            actions=(
                "cloudformation:*",
                "iam:PassRole",
                "iam:CreateServiceLinkedRole",
            ),
            resources=(
                f"arn:aws:cloudformation:{region}:{account}:stackset/{name}:*",
                f"arn:aws:cloudformation:*:{account}:stack/StackSet-{name}*",
                f"arn:aws:cloudformation:{region}:{account}:stack/{bucket_name}/*",
            ),
        ),
    ]
