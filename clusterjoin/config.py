"""
ClusterJoin Configuration
Loads node identity and join protocol settings from YAML with environment overrides
"""

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ConfigurationError
from .models import NodeIdentity, split_urls

logger = logging.getLogger(__name__)

# Environment variable -> JoinConfig attribute
ENV_OVERRIDES = {
    'CLUSTERJOIN_NAME': 'name',
    'CLUSTERJOIN_DATA_DIR': 'data_dir',
    'CLUSTERJOIN_ADVERTISE_PEER_URLS': 'advertise_peer_urls',
    'CLUSTERJOIN_ADVERTISE_CLIENT_URLS': 'advertise_client_urls',
    'CLUSTERJOIN_JOIN': 'join',
    'CLUSTERJOIN_LOG_LEVEL': 'log_level',
}

URL_LIST_FIELDS = ('advertise_peer_urls', 'advertise_client_urls', 'join')
STRING_FIELDS = ('name', 'data_dir', 'log_level')


@dataclass
class SecurityConfig:
    """TLS material for talking to the join target"""
    cacert_path: Optional[str] = None
    cert_path: Optional[str] = None
    key_path: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.cacert_path)


@dataclass
class JoinSettings:
    """Protocol knobs; intervals and timeouts are in seconds"""
    lock_name: str = "/clusterjoin/join"
    lock_ttl: int = 60
    dial_timeout: float = 3.0
    request_timeout: float = 10.0
    confirmation_attempts: int = 20
    quiescence_interval: float = 0.5
    add_retry_interval: float = 1.0
    confirmation_interval: float = 0.5
    # None keeps the quiescence wait and the add retry unbounded
    deadline: Optional[float] = None
    # False keeps the historical behaviour of treating a lock failure as "nothing to do"
    strict_lock: bool = False

    def __post_init__(self):
        if self.confirmation_attempts < 1:
            raise ConfigurationError("confirmation_attempts must be at least 1")
        if self.deadline is not None and self.deadline <= 0:
            raise ConfigurationError("deadline must be positive when set")


@dataclass
class JoinConfig:
    """Everything prepare-join needs to know about this node"""
    name: str = ""
    data_dir: str = "./data"
    advertise_peer_urls: List[str] = field(default_factory=list)
    advertise_client_urls: List[str] = field(default_factory=list)
    join: List[str] = field(default_factory=list)
    log_level: str = "INFO"
    security: SecurityConfig = field(default_factory=SecurityConfig)
    settings: JoinSettings = field(default_factory=JoinSettings)

    def identity(self) -> NodeIdentity:
        return NodeIdentity(
            name=self.name,
            data_dir=self.data_dir,
            advertise_peer_urls=list(self.advertise_peer_urls),
            advertise_client_urls=list(self.advertise_client_urls),
            join_urls=list(self.join)
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JoinConfig':
        data = dict(data or {})
        security = _build_section(SecurityConfig, data.pop('security', None), 'security')
        settings = _build_section(JoinSettings, data.pop('settings', None), 'settings')

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(sorted(unknown))}")

        for key in STRING_FIELDS:
            if key in data and not isinstance(data[key], str):
                raise ConfigurationError(f"{key} must be a string, got {data[key]!r}")

        for key in URL_LIST_FIELDS:
            if key in data:
                data[key] = _url_list(data[key])

        return cls(security=security, settings=settings, **data)


def _url_list(value: Union[str, List[str], None]) -> List[str]:
    """Accept either a YAML list or a comma-separated string"""
    if value is None:
        return []
    if isinstance(value, str):
        return split_urls(value)
    return [str(url).strip() for url in value if str(url).strip()]


def _build_section(section_cls, data: Optional[Dict[str, Any]], section: str):
    try:
        return section_cls(**(data or {}))
    except TypeError as e:
        raise ConfigurationError(f"invalid {section} section: {e}") from e


def load_config(config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> JoinConfig:
    """Load configuration from YAML file, then apply CLUSTERJOIN_* environment overrides"""
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}

    if config_path:
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"cannot read config file {config_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"config file {config_path} must contain a mapping")

        logger.debug(f"Loaded configuration from {config_path}")

    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None:
            data[key] = value

    return JoinConfig.from_dict(data)
