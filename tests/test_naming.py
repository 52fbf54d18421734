import itertools

import pytest
from replication_plan import naming
from replication_plan.errors import ConfigurationError

REGIONS = ["eu-west-1", "eu-north-1", "eu-central-1", "us-east-1", "us-gov-west-1", "ap-southeast-2"]


class TestNamingConvention:
    """Test names derived for replicas and keys"""

    def test_replica_bucket_name(self):
        assert naming.replica_bucket_name("wese-archive", "eu-west-1") == "wese-archive-replication-eu-west-1"

    def test_replica_key_alias_arn(self):
        assert (
            naming.replica_key_alias_arn("wese", "eu-north-1", "123456789012")
            == "arn:aws:kms:eu-north-1:123456789012:alias/wese/replication"
        )

    def test_objects_arn(self):
        assert naming.objects_arn("wese") == "arn:aws:s3:::wese/*"

    def test_stack_set_name(self):
        assert naming.stack_set_name("wese") == "wese-replication"

    def test_statement_sid_is_alphanumeric(self):
        sid = naming.statement_sid("Encrypt", "us-gov-west-1")

        assert sid == "EncryptUsGovWest1"
        assert sid.isalnum()

    def test_replica_names_do_not_collide(self):
        """Test distinct regions never map to the same replica bucket"""
        names = {naming.replica_bucket_name("wese", region) for region in REGIONS}

        assert len(names) == len(REGIONS)
        assert "wese" not in names

    def test_sids_do_not_collide(self):
        sids = {naming.statement_sid(p, r) for p, r in itertools.product(["Encrypt", "Replicate"], REGIONS)}

        assert len(sids) == 2 * len(REGIONS)


class TestValidation:
    """Test input validation"""

    def test_empty_regions(self):
        with pytest.raises(ConfigurationError, match="empty"):
            naming.validate_regions("wese", [])

    def test_duplicate_region_is_named(self):
        with pytest.raises(ConfigurationError, match="'eu-west-1' appears more than once"):
            naming.validate_regions("wese", ["eu-west-1", "eu-north-1", "eu-west-1"])

    @pytest.mark.parametrize("region", ["", "EU-WEST-1", "eu_west_1", "europe"])
    def test_invalid_region(self, region):
        with pytest.raises(ConfigurationError):
            naming.validate_region(region)

    def test_replica_name_too_long(self):
        with pytest.raises(ConfigurationError, match="exceeds 63"):
            naming.validate_regions("a" * 45, ["ap-southeast-2"])

    @pytest.mark.parametrize("name", ["", "Wese", "-wese", "we", "wese_archive"])
    def test_invalid_bucket_name(self, name):
        with pytest.raises(ConfigurationError):
            naming.validate_bucket_name(name)
