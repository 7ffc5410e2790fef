"""
ClusterJoin Membership Client
Lists, adds and removes members of the consensus cluster
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from .etcd_gateway import EtcdGateway
from .models import ClusterMember, MembershipSnapshot

logger = logging.getLogger(__name__)


class MembershipClient(ABC):
    """Membership surface of the consensus cluster; every call may fail with TransientTransportError"""

    @abstractmethod
    async def list_members(self) -> MembershipSnapshot:
        raise NotImplementedError

    @abstractmethod
    async def add_learner(self, peer_urls: List[str]) -> ClusterMember:
        """Register a non-voting member and return it with its assigned ID"""
        raise NotImplementedError

    @abstractmethod
    async def remove_member(self, member_id: int):
        raise NotImplementedError


class EtcdMembershipClient(MembershipClient):
    """MembershipClient backed by the etcd cluster API"""

    def __init__(self, gateway: EtcdGateway):
        self.gateway = gateway

    async def list_members(self) -> MembershipSnapshot:
        data = await self.gateway.post('/v3/cluster/member/list', {'linearizable': True})
        members = [ClusterMember.from_dict(m) for m in data.get('members', [])]
        return MembershipSnapshot(members)

    async def add_learner(self, peer_urls: List[str]) -> ClusterMember:
        data = await self.gateway.post('/v3/cluster/member/add', {
            'peerURLs': list(peer_urls),
            'isLearner': True
        })
        member = ClusterMember.from_dict(data.get('member', {}))
        logger.info(f"Added learner member {member.member_id:x} with peer urls {member.peer_urls}")
        return member

    async def remove_member(self, member_id: int):
        await self.gateway.post('/v3/cluster/member/remove', {'ID': str(member_id)})
        logger.info(f"Removed member {member_id:x}")
