"""
ClusterJoin Errors
Failure taxonomy for the join protocol
"""

from typing import Optional


class JoinError(Exception):
    """Base class for every join failure"""


class ConfigurationError(JoinError):
    """Node identity or process configuration is unusable"""


class SelfJoinError(JoinError):
    """The join target points back at this node"""


class DuplicateMemberError(JoinError):
    """Another identity already holds this node's name or slot"""


class TransientTransportError(JoinError):
    """A call to the membership service failed and may be retried"""

    def __init__(self, message: str, endpoint: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status


class MemberNotJoinedError(JoinError):
    """The added member never showed up in the member list"""


class InconsistentMembershipError(JoinError):
    """An unexpected in-flight registration was seen while holding the join lock"""


class PersistenceIOError(JoinError):
    """The join marker could not be read or written"""


class LockAcquisitionError(JoinError):
    """The cluster-wide join lock could not be taken"""


class JoinTimeoutError(JoinError):
    """The configured join deadline expired"""
