"""
ClusterJoin etcd Gateway
Thin aiohttp client for the etcd v3 JSON gateway shared by the membership client and the join lock
"""

import asyncio
import base64
import logging
import ssl
from typing import Any, Dict, List, Optional

import aiohttp

from .errors import ConfigurationError, TransientTransportError

logger = logging.getLogger(__name__)


def normalize_endpoint(endpoint: str, default_scheme: str = "http") -> str:
    """Give bare host:port endpoints a scheme and drop trailing slashes"""
    endpoint = endpoint.strip().rstrip('/')
    if '://' not in endpoint:
        endpoint = f"{default_scheme}://{endpoint}"
    return endpoint


def encode_key(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


class EtcdGateway:
    """
    JSON-over-HTTP access to an etcd cluster.

    Endpoints are tried in order. A transport failure on one endpoint moves on
    to the next and the endpoint that last answered is tried first next time.
    A non-2xx reply is an answer from the cluster and is not retried here.
    """

    def __init__(self, endpoints: List[str], ssl_context: Optional[ssl.SSLContext] = None,
                 dial_timeout: float = 3.0, request_timeout: float = 10.0):
        if not endpoints:
            raise ConfigurationError("no etcd endpoints to connect to")

        scheme = "https" if ssl_context is not None else "http"
        self.endpoints = [normalize_endpoint(e, scheme) for e in endpoints]
        self.ssl_context = ssl_context
        self.dial_timeout = dial_timeout
        self.request_timeout = request_timeout
        self.http_session: Optional[aiohttp.ClientSession] = None
        self._preferred = 0

    async def open(self):
        """Create the HTTP session"""
        connector = aiohttp.TCPConnector(
            limit=10,
            ssl=self.ssl_context if self.ssl_context is not None else True
        )
        timeout = aiohttp.ClientTimeout(total=self.request_timeout, connect=self.dial_timeout)
        self.http_session = aiohttp.ClientSession(connector=connector, timeout=timeout)
        logger.debug(f"Opened etcd gateway session for {', '.join(self.endpoints)}")

    async def close(self):
        if self.http_session:
            await self.http_session.close()
            self.http_session = None

    async def __aenter__(self) -> 'EtcdGateway':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _ordered_endpoints(self) -> List[int]:
        count = len(self.endpoints)
        return [(self._preferred + offset) % count for offset in range(count)]

    async def post(self, path: str, payload: Optional[Dict[str, Any]] = None,
                   timeout: Optional[aiohttp.ClientTimeout] = None,
                   failover_on_timeout: bool = True) -> Dict[str, Any]:
        """
        POST a JSON body to the first endpoint that answers and return the decoded reply

        With failover_on_timeout=False a timed-out call is not repeated on the
        next endpoint, so a blocking call waits at most one timeout in total.
        """
        if self.http_session is None:
            raise TransientTransportError("etcd gateway session is not open")

        last_error: Optional[Exception] = None
        call_timeout = timeout or self.http_session.timeout

        for index in self._ordered_endpoints():
            endpoint = self.endpoints[index]
            url = f"{endpoint}{path}"

            try:
                async with self.http_session.post(url, json=payload or {}, timeout=call_timeout) as response:
                    body = await response.json(content_type=None)

                    if response.status >= 300:
                        message = (body.get('message') or body.get('error')) if isinstance(body, dict) else body
                        raise TransientTransportError(
                            f"{path} failed on {endpoint}: HTTP {response.status} {message}",
                            endpoint=endpoint,
                            status=response.status
                        )

                    self._preferred = index
                    return body if isinstance(body, dict) else {}

            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.debug(f"etcd endpoint {endpoint} failed for {path}: {e!r}")
                last_error = e

                if isinstance(e, asyncio.TimeoutError) and not failover_on_timeout:
                    raise TransientTransportError(
                        f"{path} timed out on {endpoint}", endpoint=endpoint
                    ) from e

        raise TransientTransportError(
            f"{path} failed on every endpoint: {last_error!r}"
        ) from last_error
