"""
Configuration module for the Havona persistor.

Centralizes all configuration with environment variable support and
validation, and wires a store from it.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from .events import EventLog, EventSigner, InMemoryEventBackend, SqliteEventBackend
from .p256 import P256Verifier
from .store import DEFAULT_CHAIN_ID, BlobStore
from .typed_data import DOMAIN_NAME, DOMAIN_VERSION
from .util import is_address

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("dev", "stage", "prod")
EVENT_LOG_BACKENDS = ("memory", "sqlite")

# Well-known development operator; never valid outside dev
DEV_OPERATOR = "0x00000000000000000000000000000000000000aa"


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class ConfigError(ValueError):
    """Raised when settings fail validation."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


@dataclass
class Settings:
    """Runtime settings, normally read from HAVONA_* environment variables."""
    env: str = "dev"
    chain_id: int = DEFAULT_CHAIN_ID
    domain_name: str = DOMAIN_NAME
    domain_version: str = DOMAIN_VERSION
    operator: str = DEV_OPERATOR
    store_address: Optional[str] = None
    p256_skip_verify: bool = False
    event_log_backend: str = "memory"
    event_log_db: str = "data/havona_events.db"
    event_signing_key: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            env=os.getenv("HAVONA_ENV", "dev"),
            chain_id=int(os.getenv("HAVONA_CHAIN_ID", str(DEFAULT_CHAIN_ID))),
            domain_name=os.getenv("HAVONA_DOMAIN_NAME", DOMAIN_NAME),
            domain_version=os.getenv("HAVONA_DOMAIN_VERSION", DOMAIN_VERSION),
            operator=os.getenv("HAVONA_OPERATOR", DEV_OPERATOR),
            store_address=os.getenv("HAVONA_STORE_ADDRESS") or None,
            p256_skip_verify=_env_flag("HAVONA_P256_SKIP_VERIFY"),
            event_log_backend=os.getenv("HAVONA_EVENT_LOG_BACKEND", "memory"),
            event_log_db=os.getenv("HAVONA_EVENT_LOG_DB", "data/havona_events.db"),
            event_signing_key=os.getenv("HAVONA_EVENT_SIGNING_KEY") or None,
            log_level=os.getenv("HAVONA_LOG_LEVEL", "INFO"),
            log_json=_env_flag("HAVONA_LOG_JSON", "true"),
        )

    @property
    def is_production(self) -> bool:
        return self.env == "prod"

    @property
    def is_debug(self) -> bool:
        return _env_flag("HAVONA_DEBUG") or self.log_level.upper() == "DEBUG"

    def validate(self) -> None:
        """
        Check settings for consistency.

        Raises:
            ConfigError: Listing every problem found
        """
        problems = []
        if self.env not in ENVIRONMENTS:
            problems.append(f"HAVONA_ENV must be one of {', '.join(ENVIRONMENTS)}")
        if self.chain_id <= 0:
            problems.append("HAVONA_CHAIN_ID must be positive")
        if not is_address(self.operator):
            problems.append("HAVONA_OPERATOR is not an address")
        if self.store_address is not None and not is_address(self.store_address):
            problems.append("HAVONA_STORE_ADDRESS is not an address")
        if self.event_log_backend not in EVENT_LOG_BACKENDS:
            problems.append(f"HAVONA_EVENT_LOG_BACKEND must be one of {', '.join(EVENT_LOG_BACKENDS)}")

        if self.is_production:
            if self.p256_skip_verify:
                problems.append("HAVONA_P256_SKIP_VERIFY is not allowed in prod")
            if self.operator.lower() == DEV_OPERATOR:
                problems.append("HAVONA_OPERATOR must be set in prod")
            if self.store_address is None:
                problems.append("HAVONA_STORE_ADDRESS must be set in prod")
            if self.event_signing_key is None:
                problems.append("HAVONA_EVENT_SIGNING_KEY must be set in prod")

        if problems:
            raise ConfigError(problems)


def build_event_log(settings: Settings) -> EventLog:
    if settings.event_signing_key:
        signer = EventSigner.from_file(settings.event_signing_key)
    else:
        logger.warning("No event signing key configured; using an ephemeral key")
        signer = EventSigner()

    if settings.event_log_backend == "sqlite":
        backend = SqliteEventBackend(settings.event_log_db)
    else:
        backend = InMemoryEventBackend()
    return EventLog(signer=signer, backend=backend)


def build_store(settings: Optional[Settings] = None) -> BlobStore:
    """Validate settings and wire a store with its verifier and event log."""
    if settings is None:
        settings = Settings.from_env()
    settings.validate()

    return BlobStore(
        operator=settings.operator,
        verifier=P256Verifier(skip_verification=settings.p256_skip_verify),
        chain_id=settings.chain_id,
        address=settings.store_address,
        event_log=build_event_log(settings),
        domain_name=settings.domain_name,
        domain_version=settings.domain_version,
        allow_skip_verification=settings.p256_skip_verify and not settings.is_production,
    )
