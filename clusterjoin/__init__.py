"""
ClusterJoin
Startup join protocol for nodes of a consensus-backed cluster
"""

__version__ = "0.1.0"

from .config import JoinConfig, JoinSettings, SecurityConfig, load_config
from .coordinator import JoinCoordinator, prepare_join
from .errors import (
    ConfigurationError, DuplicateMemberError, InconsistentMembershipError, JoinError,
    JoinTimeoutError, LockAcquisitionError, MemberNotJoinedError, PersistenceIOError,
    SelfJoinError, TransientTransportError
)
from .models import ClusterMember, ClusterState, JoinOutcome, MembershipSnapshot, NodeIdentity
from .reconciler import JoinHooks, MembershipReconciler

__all__ = [
    'JoinConfig',
    'JoinSettings',
    'SecurityConfig',
    'load_config',
    'JoinCoordinator',
    'prepare_join',
    'JoinHooks',
    'MembershipReconciler',
    'ClusterMember',
    'ClusterState',
    'JoinOutcome',
    'MembershipSnapshot',
    'NodeIdentity',
    'JoinError',
    'ConfigurationError',
    'SelfJoinError',
    'DuplicateMemberError',
    'TransientTransportError',
    'MemberNotJoinedError',
    'InconsistentMembershipError',
    'PersistenceIOError',
    'LockAcquisitionError',
    'JoinTimeoutError',
]
