"""
ClusterJoin Data Model
Node identity, member records and the join outcome handed to the consensus engine
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .errors import ConfigurationError


class ClusterState(Enum):
    EXISTING = "existing"


def same_urls(left: Iterable[str], right: Iterable[str]) -> bool:
    """Compare two URL collections as sets: canonicalise by sorting, then compare elementwise"""
    left_sorted = sorted(left)
    right_sorted = sorted(right)
    if len(left_sorted) != len(right_sorted):
        return False
    return all(a == b for a, b in zip(left_sorted, right_sorted))


def split_urls(value: Optional[str]) -> List[str]:
    """Split a comma-separated URL list, dropping blanks"""
    if not value:
        return []
    return [url.strip() for url in value.split(',') if url.strip()]


@dataclass(frozen=True)
class NodeIdentity:
    """This node as described by its configuration"""
    name: str
    data_dir: str
    advertise_peer_urls: List[str] = field(default_factory=list)
    advertise_client_urls: List[str] = field(default_factory=list)
    join_urls: List[str] = field(default_factory=list)

    def validate_for_registration(self):
        """Reject identities that cannot be registered as a member"""
        if not self.name:
            raise ConfigurationError("node name must not be empty")
        if not self.advertise_peer_urls:
            raise ConfigurationError(f"node {self.name} has no advertised peer URLs")

    def is_self_join(self) -> bool:
        return same_urls(self.join_urls, self.advertise_client_urls)


@dataclass
class ClusterMember:
    """A registered member as reported by the membership service"""
    member_id: int
    name: str = ""
    peer_urls: List[str] = field(default_factory=list)
    client_urls: List[str] = field(default_factory=list)
    is_learner: bool = False

    @property
    def is_placeholder(self) -> bool:
        """Registered, but the member process has not started and advertised its name yet"""
        return len(self.name) == 0

    @classmethod
    def from_dict(cls, data: Dict) -> 'ClusterMember':
        return cls(
            member_id=int(data.get('ID', 0)),
            name=data.get('name', ''),
            peer_urls=list(data.get('peerURLs') or []),
            client_urls=list(data.get('clientURLs') or []),
            is_learner=bool(data.get('isLearner', False))
        )

    def to_dict(self) -> Dict:
        return {
            'ID': str(self.member_id),
            'name': self.name,
            'peerURLs': list(self.peer_urls),
            'clientURLs': list(self.client_urls),
            'isLearner': self.is_learner
        }


@dataclass
class MembershipSnapshot:
    """One point-in-time read of the member list"""
    members: List[ClusterMember] = field(default_factory=list)

    def __iter__(self):
        return iter(self.members)

    def __len__(self) -> int:
        return len(self.members)

    def find(self, member_id: int) -> Optional[ClusterMember]:
        for member in self.members:
            if member.member_id == member_id:
                return member
        return None

    @property
    def voting_count(self) -> int:
        return sum(1 for member in self.members if not member.is_learner)


@dataclass(frozen=True)
class JoinOutcome:
    """Initial-cluster settings for the consensus engine"""
    initial_cluster: str = ""
    cluster_state: Optional[ClusterState] = None

    @property
    def is_empty(self) -> bool:
        return not self.initial_cluster and self.cluster_state is None


def format_initial_cluster(pairs: Iterable[tuple]) -> str:
    """Serialise (name, peer URL) pairs as name=url,name=url"""
    return ",".join(f"{name}={url}" for name, url in pairs)
