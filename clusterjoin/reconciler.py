"""
ClusterJoin Membership Reconciler
Registers this node as a learner and derives the initial-cluster descriptor

Must only run while the cluster join lock is held: the "unnamed member"
checks below assume no other node is registering at the same time.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from .config import JoinSettings
from .errors import (
    DuplicateMemberError, InconsistentMembershipError, JoinTimeoutError,
    MemberNotJoinedError, TransientTransportError
)
from .join_state import JoinStatePersister
from .membership import MembershipClient
from .models import (
    ClusterMember, ClusterState, JoinOutcome, MembershipSnapshot, NodeIdentity,
    format_initial_cluster, same_urls
)

logger = logging.getLogger(__name__)

DUPLICATE_JOIN_MESSAGE = "missing data or join a duplicated member"


class JoinHooks:
    """
    Seam for steering the protocol in fault-injection tests.

    The default hooks leave the protocol untouched.
    """

    def confirmation_attempts(self, configured: int) -> int:
        return configured

    def skip_registration(self) -> bool:
        """Skip stale-member removal and the add-learner call"""
        return False


class MembershipReconciler:
    """Runs the locked part of the join: wait, classify, clean up, register, confirm, persist"""

    def __init__(self, identity: NodeIdentity, client: MembershipClient,
                 persister: JoinStatePersister, settings: Optional[JoinSettings] = None,
                 hooks: Optional[JoinHooks] = None):
        self.identity = identity
        self.client = client
        self.persister = persister
        self.settings = settings or JoinSettings()
        self.hooks = hooks or JoinHooks()
        self._deadline: Optional[float] = None

    async def reconcile(self) -> JoinOutcome:
        if self.settings.deadline is not None:
            self._deadline = asyncio.get_running_loop().time() + self.settings.deadline

        snapshot = await self._wait_for_quiescence()

        stale_member_id = self._classify(snapshot)

        added_id: Optional[int] = None
        if self.hooks.skip_registration():
            logger.warning("Skipping member registration")
        else:
            if stale_member_id is not None:
                await self._remove_stale_member(stale_member_id)
            added_id = await self._add_learner()

        pairs = await self._confirm(added_id)

        initial_cluster = format_initial_cluster(pairs)
        logger.info(f"Save initial cluster info: {initial_cluster}")
        self.persister.persist(initial_cluster)

        return JoinOutcome(initial_cluster=initial_cluster, cluster_state=ClusterState.EXISTING)

    async def _pause(self, interval: float, waiting_for: str):
        """Sleep between retries, honouring the optional deadline"""
        if self._deadline is not None:
            remaining = self._deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise JoinTimeoutError(f"join deadline of {self.settings.deadline}s expired while {waiting_for}")
            interval = min(interval, remaining)
        await asyncio.sleep(interval)

    def _is_own_peer_set(self, member: ClusterMember) -> bool:
        return same_urls(member.peer_urls, self.identity.advertise_peer_urls)

    async def _wait_for_quiescence(self) -> MembershipSnapshot:
        """List members until every unnamed member is this node's own earlier registration"""
        while True:
            try:
                snapshot = await self.client.list_members()
            except TransientTransportError as e:
                logger.info(f"List members failed: {e}")
                await self._pause(self.settings.quiescence_interval, "listing members")
                continue

            in_flight = [m for m in snapshot if m.is_placeholder and not self._is_own_peer_set(m)]
            if not in_flight:
                return snapshot

            for member in in_flight:
                logger.info(f"There is a member that has not joined successfully: "
                            f"client urls {member.client_urls}, peer urls {member.peer_urls}")

            await self._pause(self.settings.quiescence_interval, "waiting for other members to join")

    def _classify(self, snapshot: MembershipSnapshot) -> Optional[int]:
        """
        Check the snapshot for members bound to this node's name or slot.

        Returns the ID of this node's own stale registration if there is one,
        raises DuplicateMemberError if the name or slot is held by someone else.
        """
        existed = False
        stale_member_id: Optional[int] = None

        for member in snapshot:
            if member.name == self.identity.name:
                logger.info(f"Found member {member.name}: client urls {member.client_urls}, "
                            f"peer urls {member.peer_urls}")
            elif member.is_placeholder:
                logger.info(f"Empty member: client urls {member.client_urls}, peer urls {member.peer_urls}")
            else:
                continue

            if not self._is_own_peer_set(member):
                existed = True
            elif stale_member_id is None:
                stale_member_id = member.member_id
            else:
                # A second entry with our peer URLs means the slot is ambiguous
                existed = True

        logger.info(f"List member info: total count {len(snapshot)}, member count {snapshot.voting_count}, "
                    f"existed {existed}, missing data {stale_member_id is not None}")

        if existed:
            raise DuplicateMemberError(DUPLICATE_JOIN_MESSAGE)

        return stale_member_id

    async def _remove_stale_member(self, member_id: int):
        try:
            await self.client.remove_member(member_id)
        except TransientTransportError as e:
            logger.warning(f"Delete member fail, id {member_id:x}: {e}")
            raise DuplicateMemberError(DUPLICATE_JOIN_MESSAGE) from e

    async def _add_learner(self) -> int:
        """Register this node as a learner, retrying until the cluster accepts it"""
        while True:
            try:
                member = await self.client.add_learner(self.identity.advertise_peer_urls)
                return member.member_id
            except TransientTransportError as e:
                logger.warning(f"Add learner fail: {e}")
                await self._pause(self.settings.add_retry_interval, "adding learner")

    async def _confirm(self, added_id: Optional[int]) -> List[Tuple[str, str]]:
        """Poll the member list until the added member shows up; return its name=peer pairs"""
        attempts = self.hooks.confirmation_attempts(self.settings.confirmation_attempts)

        for attempt in range(1, attempts + 1):
            logger.info(f"Check add member result, attempt {attempt}/{attempts}")

            try:
                snapshot = await self.client.list_members()
            except TransientTransportError as e:
                logger.info(f"List members failed: {e}")
            else:
                pairs: List[Tuple[str, str]] = []
                added = snapshot.find(added_id) if added_id is not None else None

                for member in snapshot:
                    name = self.identity.name if member is added else member.name
                    if not name and not self._is_own_peer_set(member):
                        raise InconsistentMembershipError(
                            f"there is a member that has not joined successfully: peer urls {member.peer_urls}"
                        )
                    pairs.extend((name, url) for url in member.peer_urls)

                if added is not None:
                    return pairs

            if attempt < attempts:
                await asyncio.sleep(self.settings.confirmation_interval)

        raise MemberNotJoinedError(f"join failed, adds the new member {self.identity.name} may have failed")
