class ReplicationPlanError(Exception):
    """Base class for errors raised while building a replication plan"""


class ConfigurationError(ReplicationPlanError):
    """
    Invalid input to the plan builder or the permission synthesizer.
    Raised before any node is added to the plan; never retried.
    """


class DependencyOrderingError(ReplicationPlanError):
    """
    A plan mutation was attempted out of order, or the dependency graph
    itself is inconsistent. This is a programming error.
    """


class ExternalProvisioningError(ReplicationPlanError):
    """The provisioning platform cannot realize part of the plan"""
