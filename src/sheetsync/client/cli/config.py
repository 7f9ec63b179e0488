"""Configuration utilities for the sheetsync CLI.

This module provides shared paths, logging setup and the wiring of a
SyncEngine from the persisted configuration.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Collection, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from sheetsync.core.config import TargetStore, get_config_dir

if TYPE_CHECKING:
    from sheetsync.client.auth import AuthProvider
    from sheetsync.client.backup import BackupManager
    from sheetsync.client.files import LocalFileGateway
    from sheetsync.client.sync.engine import SyncEngine

ACCESS_TOKEN_ENV = "SHEETSYNC_ACCESS_TOKEN"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_store() -> TargetStore:
    """TargetStore for the active config directory."""
    return TargetStore(get_config_dir())


def get_state_db() -> Path:
    return get_config_dir() / "state.db"


def get_backup_dir() -> Path:
    return get_config_dir() / "backups"


def get_log_file() -> Path:
    return get_config_dir() / "sheetsync.log"


def setup_logging(log_path: Path, verbose: bool = False) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
        verbose: Log debug messages.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    # Root logger for sheetsync
    root_logger = logging.getLogger("sheetsync")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as e:
        root_logger.warning("Cannot open log file %s: %s", log_path, e)
        return
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


def build_auth() -> AuthProvider:
    """Credential provider: $SHEETSYNC_ACCESS_TOKEN if set, else the keyring."""
    from sheetsync.client.auth import OAuthTokenProvider, StaticTokenProvider

    token = os.environ.get(ACCESS_TOKEN_ENV)
    if token:
        return StaticTokenProvider(token)
    return OAuthTokenProvider()


def open_backups(gateway: LocalFileGateway | None = None) -> BackupManager:
    """BackupManager over the backups directory, honoring the cache limit."""
    from sheetsync.client.backup import BackupManager
    from sheetsync.client.files import LocalFileGateway

    settings = get_store().load_settings()
    return BackupManager(
        get_backup_dir(),
        gateway or LocalFileGateway(),
        cache_limit=settings.backup_cache_limit,
    )


@contextmanager
def open_engine(target_ids: Collection[str] | None = None) -> Iterator[SyncEngine]:
    """Build a SyncEngine with the persisted targets registered.

    Args:
        target_ids: Only register these targets (default: all).

    Target updates made by the engine (last backup time) are written back
    to config.json. Everything is closed on exit.
    """
    from sheetsync.client.api import GoogleSheetsClient
    from sheetsync.client.files import LocalFileGateway
    from sheetsync.client.state import BaselineStore
    from sheetsync.client.sync import ChangeDetector, RateLimiter, SyncEngine

    store = get_store()
    settings = store.load_settings()
    gateway = LocalFileGateway()

    auth = build_auth()
    client = GoogleSheetsClient(auth, RateLimiter(), timeout=settings.request_timeout)
    baselines = BaselineStore(get_state_db())
    backups = open_backups(gateway)

    engine = SyncEngine(
        remote=client,
        auth=auth,
        detector=ChangeDetector(baselines),
        gateway=gateway,
        backups=backups,
        settings=settings,
    )
    engine.on_target_update = store.save_target
    for target in store.load_targets():
        if target_ids is None or target.id in target_ids:
            engine.add_target(target)

    try:
        yield engine
    finally:
        engine.stop()
        client.close()
        baselines.close()
        backups.close()

