"""
Shared fixtures: in-memory collaborators and an in-process fake etcd JSON gateway
"""

import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from clusterjoin.cluster_lock import ClusterLock, LockHandle
from clusterjoin.config import JoinSettings
from clusterjoin.errors import TransientTransportError
from clusterjoin.membership import MembershipClient
from clusterjoin.models import ClusterMember, MembershipSnapshot, NodeIdentity
from clusterjoin.reconciler import JoinHooks

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


def member(member_id: int, name: str, *peer_urls: str, is_learner: bool = False) -> ClusterMember:
    return ClusterMember(member_id=member_id, name=name, peer_urls=list(peer_urls),
                         client_urls=[], is_learner=is_learner)


class FakeMembershipClient(MembershipClient):
    """
    Scripted membership service.

    Each list_members() call returns the next queued snapshot; the last one
    repeats. A queued exception is raised instead of returning a snapshot.
    """

    def __init__(self, *snapshots, next_id: int = 100, add_failures: int = 0,
                 remove_error: Optional[Exception] = None):
        self.snapshots = list(snapshots)
        self.next_id = next_id
        self.add_failures = add_failures
        self.remove_error = remove_error
        self.calls: List[str] = []
        self.added: List[List[str]] = []
        self.removed: List[int] = []

    async def list_members(self) -> MembershipSnapshot:
        self.calls.append('list')
        item = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(item, Exception):
            raise item
        return MembershipSnapshot(list(item))

    async def add_learner(self, peer_urls: List[str]) -> ClusterMember:
        self.calls.append('add')
        if self.add_failures > 0:
            self.add_failures -= 1
            raise TransientTransportError("add refused")
        self.added.append(list(peer_urls))
        return ClusterMember(member_id=self.next_id, peer_urls=list(peer_urls), is_learner=True)

    async def remove_member(self, member_id: int):
        self.calls.append('remove')
        if self.remove_error:
            raise self.remove_error
        self.removed.append(member_id)


class FakeLockHandle(LockHandle):
    def __init__(self, lock: 'FakeClusterLock', name: str):
        super().__init__(name)
        self.lock = lock

    async def release(self):
        self.lock.events.append(f'release:{self.name}')
        if self.lock.release_error:
            raise self.lock.release_error


class FakeClusterLock(ClusterLock):
    def __init__(self, acquire_error: Optional[Exception] = None,
                 release_error: Optional[Exception] = None):
        self.acquire_error = acquire_error
        self.release_error = release_error
        self.events: List[str] = []

    async def open(self):
        self.events.append('open')

    async def close(self):
        self.events.append('close')

    async def acquire(self, name: str) -> LockHandle:
        if self.acquire_error:
            raise self.acquire_error
        self.events.append(f'acquire:{name}')
        return FakeLockHandle(self, name)


class AddMemberFailureHooks(JoinHooks):
    """Pretends the add request was lost: no remove/add and a short confirmation budget"""

    def confirmation_attempts(self, configured: int) -> int:
        return 2

    def skip_registration(self) -> bool:
        return True


class FakeEtcd:
    """Just enough of the etcd v3 JSON gateway for the join protocol"""

    def __init__(self, members: Optional[List[ClusterMember]] = None):
        self.members: Dict[int, ClusterMember] = {m.member_id: m for m in members or []}
        self.next_member_id = max(self.members, default=0) + 1
        self.leases: Dict[int, int] = {}
        self.next_lease_id = 7000
        self.locks: Dict[str, int] = {}
        self.requests: List[str] = []
        self.fail_paths: Dict[str, int] = {}
        self.lock_delay = 0.0

        self.app = web.Application()
        for path, handler in [
            ('/v3/cluster/member/list', self._member_list),
            ('/v3/cluster/member/add', self._member_add),
            ('/v3/cluster/member/remove', self._member_remove),
            ('/v3/lease/grant', self._lease_grant),
            ('/v3/lease/keepalive', self._lease_keepalive),
            ('/v3/lease/revoke', self._lease_revoke),
            ('/v3/lock/lock', self._lock),
            ('/v3/lock/unlock', self._unlock),
        ]:
            self.app.router.add_post(path, self._recorded(path, handler))

    def _recorded(self, path, handler):
        async def wrapper(request):
            self.requests.append(path)
            if self.fail_paths.get(path, 0) > 0:
                self.fail_paths[path] -= 1
                return web.json_response({'error': 'etcdserver: unavailable', 'code': 14}, status=503)
            data = await request.json()
            return await handler(data)
        return wrapper

    def _members_json(self) -> List[Dict]:
        return [m.to_dict() for m in self.members.values()]

    async def _member_list(self, data):
        return web.json_response({'header': {}, 'members': self._members_json()})

    async def _member_add(self, data):
        new_member = ClusterMember(member_id=self.next_member_id, peer_urls=data['peerURLs'],
                                   is_learner=data.get('isLearner', False))
        self.next_member_id += 1
        self.members[new_member.member_id] = new_member
        return web.json_response({'member': new_member.to_dict(), 'members': self._members_json()})

    async def _member_remove(self, data):
        member_id = int(data['ID'])
        if member_id not in self.members:
            return web.json_response({'error': 'etcdserver: member not found', 'code': 5}, status=404)
        del self.members[member_id]
        return web.json_response({'members': self._members_json()})

    async def _lease_grant(self, data):
        lease_id = self.next_lease_id
        self.next_lease_id += 1
        self.leases[lease_id] = int(data['TTL'])
        return web.json_response({'ID': str(lease_id), 'TTL': str(data['TTL'])})

    async def _lease_keepalive(self, data):
        return web.json_response({'result': {'ID': data['ID'], 'TTL': str(self.leases.get(int(data['ID']), 0))}})

    async def _lease_revoke(self, data):
        lease_id = int(data['ID'])
        self.leases.pop(lease_id, None)
        self.locks = {name: lease for name, lease in self.locks.items() if lease != lease_id}
        return web.json_response({})

    async def _lock(self, data):
        if self.lock_delay:
            await asyncio.sleep(self.lock_delay)
        name = base64.b64decode(data['name']).decode()
        lease_id = int(data['lease'])
        if lease_id not in self.leases:
            return web.json_response({'error': 'etcdserver: requested lease not found', 'code': 5}, status=404)
        self.locks[name] = lease_id
        key = f"{name}/{lease_id:x}"
        return web.json_response({'key': base64.b64encode(key.encode()).decode()})

    async def _unlock(self, data):
        key = base64.b64decode(data['key']).decode()
        name = key.rsplit('/', 1)[0]
        self.locks.pop(name, None)
        return web.json_response({})


@pytest.fixture
def identity(tmp_path):
    return NodeIdentity(
        name="D",
        data_dir=str(tmp_path / "node-d"),
        advertise_peer_urls=["http://peer4:2380"],
        advertise_client_urls=["http://client4:2379"],
        join_urls=["http://client1:2379"]
    )


@pytest.fixture
def fast_settings():
    return JoinSettings(quiescence_interval=0, add_retry_interval=0, confirmation_interval=0)


@pytest.fixture
def connector_for():
    """Build a coordinator connector around in-memory collaborators"""
    def build(client: MembershipClient, lock: ClusterLock):
        @asynccontextmanager
        async def connect():
            yield client, lock
        return connect
    return build


@pytest.fixture
async def etcd_server():
    """Start a FakeEtcd on a random local port; yields (fake, base_url)"""
    servers = []

    async def start(members=None):
        fake = FakeEtcd(members)
        server = TestServer(fake.app)
        await server.start_server()
        servers.append(server)
        return fake, f"http://{server.host}:{server.port}"

    yield start

    for server in servers:
        await server.close()
