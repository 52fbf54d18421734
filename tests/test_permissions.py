import pytest
from replication_plan import permissions
from replication_plan.errors import ConfigurationError
from replication_plan.graph import Ref

ACCOUNT = "123456789012"
KEY = "arn:aws:kms:eu-central-1:123456789012:key/1234"
REGIONS = ["eu-west-1", "eu-north-1", "us-east-1"]


def statements_for(regions=REGIONS):
    return permissions.replication_statements("wese-archive", KEY, regions, ACCOUNT)


class TestReplicationStatements:
    """Test the grants of the replication role"""

    def test_source_statements_come_first(self):
        statements = statements_for()

        assert statements[0].actions == ("s3:GetReplicationConfiguration", "s3:ListBucket")
        assert statements[0].resources == ("arn:aws:s3:::wese-archive",)
        assert statements[1].resources == ("arn:aws:s3:::wese-archive/*",)
        assert all(a.startswith("s3:GetObjectVersion") for a in statements[1].actions)
        assert statements[2].actions == ("kms:Decrypt",)
        assert statements[2].resources == (KEY,)

    def test_one_statement_of_each_group_per_region(self):
        statements = statements_for()[3:]

        for actions in [
            ("kms:Encrypt",),
            ("s3:ReplicateDelete", "s3:ReplicateObject", "s3:ReplicateTags"),
            ("s3:List*", "s3:GetBucketVersioning", "s3:PutBucketVersioning"),
        ]:
            group = [s for s in statements if s.actions == actions]
            assert len(group) == len(REGIONS)

    def test_every_region_statement_names_one_region(self):
        statements = statements_for()[3:]

        for region in REGIONS:
            scoped = [s for s in statements if any(region in r for r in s.resources)]
            assert len(scoped) == 3
            for statement in scoped:
                assert len(statement.resources) == 1
                assert "*" not in statement.resources[0].split(region)[0]

    def test_region_scoped_resources(self):
        encrypt, replicate, manage = statements_for(["eu-west-1"])[3:]

        assert encrypt.resources == ("arn:aws:kms:eu-west-1:123456789012:alias/wese-archive/replication",)
        assert replicate.resources == ("arn:aws:s3:::wese-archive-replication-eu-west-1/*",)
        assert manage.resources == ("arn:aws:s3:::wese-archive-replication-eu-west-1",)

    def test_deterministic(self):
        assert statements_for() == statements_for()

    def test_sids_are_unique(self):
        sids = [s.sid for s in statements_for()]

        assert len(sids) == len(set(sids))

    def test_empty_regions(self):
        with pytest.raises(ConfigurationError):
            statements_for([])

    def test_duplicate_regions(self):
        with pytest.raises(ConfigurationError, match="eu-west-1"):
            statements_for(["eu-west-1", "eu-west-1"])


class TestOtherStatements:
    """Test deny and orchestration statements"""

    def test_deny_destruction(self):
        bucket, objects = permissions.deny_destruction_statements("wese")

        assert bucket.to_json() == {
            "Sid": "DenyDeleteBucket",
            "Effect": "Deny",
            "Principal": "*",
            "Action": ["s3:DeleteBucket"],
            "Resource": ["arn:aws:s3:::wese"],
        }
        assert objects.actions == ("s3:DeleteObjectVersion",)
        assert objects.resources == ("arn:aws:s3:::wese/*",)

    def test_admin_may_only_assume_execution_role(self):
        (statement,) = permissions.stack_set_admin_statements(Ref("StackSetExecutionRole"))

        assert statement.actions == ("sts:AssumeRole",)
        assert statement.to_json()["Resource"] == [{"Fn::GetAtt": ["StackSetExecutionRole", "arn"]}]

    def test_execution_role_scoped_to_stack_set(self):
        statements = permissions.stack_set_execution_statements("wese", "eu-central-1", ACCOUNT)
        by_sid = {s.sid: s for s in statements}

        assert by_sid["AllowS3"].resources == ("arn:aws:s3:::wese-replication-*",)
        assert (
            "arn:aws:cloudformation:eu-central-1:123456789012:stackset/wese-replication:*"
            in by_sid["CFPermissions"].resources
        )

    def test_key_decrypt_grant(self):
        statement = permissions.key_decrypt_grant(Ref("ReplicationRole"))

        assert statement.to_json()["Principal"] == {"AWS": [{"Fn::GetAtt": ["ReplicationRole", "arn"]}]}
