"""
ClusterJoin Coordinator
Decides at startup whether this node must register with an existing cluster

With a join marker or replicated data on disk the coordinator answers
locally. Only a node with neither goes to the cluster, and it does so while
holding the cluster-wide join lock.

Cases without local data:
- A new node joins an existing cluster: add it as a learner, then build the
  initial cluster from the member list.
- A node that lost its data re-joins with its old name and peer URLs: remove
  the stale registration, then join as a new node.
- A node whose name is bound to different peer URLs: refuse, an operator has
  to sort out the conflict.

Cases with local data:
- The consensus engine reads its membership from the data directory, so the
  outcome carries no descriptor, only the "existing" cluster state.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional, Tuple

from .cluster_lock import ClusterLock, EtcdClusterLock
from .config import JoinConfig, JoinSettings, SecurityConfig
from .data_dir import DataDirectoryInspector
from .errors import LockAcquisitionError, SelfJoinError
from .etcd_gateway import EtcdGateway
from .join_state import JoinStatePersister
from .membership import EtcdMembershipClient, MembershipClient
from .models import ClusterState, JoinOutcome, NodeIdentity
from .reconciler import JoinHooks, MembershipReconciler
from .security import build_ssl_context

logger = logging.getLogger(__name__)

Connector = Callable[[], AsyncContextManager[Tuple[MembershipClient, ClusterLock]]]


class JoinCoordinator:
    """Top-level join decision for one node"""

    def __init__(self, identity: NodeIdentity, settings: Optional[JoinSettings] = None,
                 security: Optional[SecurityConfig] = None,
                 connector: Optional[Connector] = None,
                 hooks: Optional[JoinHooks] = None):
        self.identity = identity
        self.settings = settings or JoinSettings()
        self.security = security or SecurityConfig()
        self.connector = connector or self._connect_etcd
        self.hooks = hooks
        self.inspector = DataDirectoryInspector(identity.data_dir)
        self.persister = JoinStatePersister(identity.data_dir)

    @asynccontextmanager
    async def _connect_etcd(self) -> AsyncIterator[Tuple[MembershipClient, ClusterLock]]:
        ssl_context = build_ssl_context(self.security)
        async with EtcdGateway(self.identity.join_urls, ssl_context,
                               dial_timeout=self.settings.dial_timeout,
                               request_timeout=self.settings.request_timeout) as gateway:
            lock = EtcdClusterLock(gateway, ttl=self.settings.lock_ttl,
                                   wait_timeout=self.settings.deadline)
            yield EtcdMembershipClient(gateway), lock

    async def prepare_join(self) -> JoinOutcome:
        identity = self.identity

        if not identity.join_urls:
            return JoinOutcome()

        if identity.is_self_join():
            raise SelfJoinError("join self is forbidden")

        logger.info(f"Prepare join cluster: name {identity.name}, join {','.join(identity.join_urls)}")

        if self.persister.exists():
            initial_cluster = self.persister.read()
            logger.info(f"Found join marker, reusing initial cluster {initial_cluster}")
            return JoinOutcome(initial_cluster=initial_cluster, cluster_state=ClusterState.EXISTING)

        if self.inspector.has_replicated_state():
            logger.info(f"Found replicated data in {self.inspector.member_path}, skipping join")
            return JoinOutcome(initial_cluster="", cluster_state=ClusterState.EXISTING)

        identity.validate_for_registration()

        async with self.connector() as (client, lock):
            async with lock:
                try:
                    handle = await lock.acquire(self.settings.lock_name)
                except LockAcquisitionError as e:
                    if self.settings.strict_lock:
                        raise
                    logger.warning(f"Could not take join lock {self.settings.lock_name}, "
                                   f"continuing without joining: {e}")
                    return JoinOutcome()

                async with handle:
                    reconciler = MembershipReconciler(identity, client, self.persister,
                                                      settings=self.settings, hooks=self.hooks)
                    return await reconciler.reconcile()


async def prepare_join(config: JoinConfig, hooks: Optional[JoinHooks] = None) -> JoinOutcome:
    """Run the join decision for a loaded configuration"""
    coordinator = JoinCoordinator(config.identity(), settings=config.settings,
                                  security=config.security, hooks=hooks)
    return await coordinator.prepare_join()
