"""
ClusterJoin Cluster Lock
Cluster-wide mutual exclusion for the join protocol, scoped to a lease-backed session
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from .errors import JoinError, LockAcquisitionError, TransientTransportError
from .etcd_gateway import EtcdGateway, encode_key

logger = logging.getLogger(__name__)


class LockHandle(ABC):
    """A held lock; leaving the async context releases it"""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def release(self):
        raise NotImplementedError

    async def __aenter__(self) -> 'LockHandle':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            await self.release()
        except JoinError as e:
            # The session lease still bounds how long the key can outlive us
            logger.error(f"Failed to release lock {self.name}: {e}")
        return False


class ClusterLock(ABC):
    """
    Named mutex visible to the whole cluster.

    Entering the async context opens the backing session; failing to open it
    propagates. acquire() raises LockAcquisitionError when the lock cannot be
    taken. Leaving the context closes the session, which also drops any lock
    still held through it.
    """

    async def open(self):
        pass

    async def close(self):
        pass

    async def __aenter__(self) -> 'ClusterLock':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    @abstractmethod
    async def acquire(self, name: str) -> LockHandle:
        raise NotImplementedError


class EtcdLockHandle(LockHandle):
    def __init__(self, gateway: EtcdGateway, name: str, key: str):
        super().__init__(name)
        self.gateway = gateway
        self.key = key
        self.released = False

    async def release(self):
        if self.released:
            return
        await self.gateway.post('/v3/lock/unlock', {'key': self.key})
        self.released = True
        logger.info(f"Released lock {self.name}")


class EtcdClusterLock(ClusterLock):
    """etcd concurrency lock: a lease kept alive in the background owns the lock key"""

    def __init__(self, gateway: EtcdGateway, ttl: int = 60, wait_timeout: Optional[float] = None):
        self.gateway = gateway
        self.ttl = ttl
        self.wait_timeout = wait_timeout
        self.lease_id: Optional[int] = None
        self.keepalive_task: Optional[asyncio.Task] = None

    async def open(self):
        """Grant the session lease and keep it alive"""
        data = await self.gateway.post('/v3/lease/grant', {'TTL': self.ttl})
        self.lease_id = int(data['ID'])
        self.keepalive_task = asyncio.create_task(self._keepalive_loop())
        logger.debug(f"Granted lock session lease {self.lease_id:x} with ttl {self.ttl}s")

    async def close(self):
        """Stop keep-alives and revoke the lease"""
        if self.keepalive_task:
            self.keepalive_task.cancel()
            try:
                await self.keepalive_task
            except asyncio.CancelledError:
                pass
            self.keepalive_task = None

        if self.lease_id is not None:
            try:
                await self.gateway.post('/v3/lease/revoke', {'ID': str(self.lease_id)})
            except TransientTransportError as e:
                logger.warning(f"Failed to revoke lease {self.lease_id:x}, it expires in {self.ttl}s: {e}")
            self.lease_id = None

    async def _keepalive_loop(self):
        interval = max(self.ttl / 3.0, 1.0)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.gateway.post('/v3/lease/keepalive', {'ID': str(self.lease_id)})
            except TransientTransportError as e:
                logger.warning(f"Lease keep-alive failed for {self.lease_id:x}: {e}")

    async def acquire(self, name: str) -> LockHandle:
        """Block until the lock is ours"""
        if self.lease_id is None:
            raise LockAcquisitionError(f"cannot lock {name}: session is not open")

        # The lock call blocks server-side until the key is ours
        timeout = aiohttp.ClientTimeout(total=self.wait_timeout, connect=self.gateway.dial_timeout)

        try:
            data = await self.gateway.post('/v3/lock/lock', {
                'name': encode_key(name),
                'lease': str(self.lease_id)
            }, timeout=timeout, failover_on_timeout=False)
        except TransientTransportError as e:
            raise LockAcquisitionError(f"failed to lock {name}: {e}") from e

        key = data.get('key')
        if not key:
            raise LockAcquisitionError(f"failed to lock {name}: no key in reply")

        logger.info(f"Acquired lock {name}")
        return EtcdLockHandle(self.gateway, name, key)
