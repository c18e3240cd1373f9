"""Configuration management for devlink."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

logger = logging.getLogger(__name__)

DEFAULT_WELCOME_TEXT = (
    "Device linked\n\n"
    "Your account is now connected.\n"
    "Session: {session_id}\n"
    "Connected: {connected_at}"
)


@dataclass
class PairingConfig:
    """Pairing code flow timing."""

    welcome_delay: float = 1.5  # seconds after open before the welcome message
    close_delay: float = 2.0  # seconds after the welcome before closing the socket
    cleanup_delay: float = 5.0  # seconds after close before removing credentials
    min_digits: int = 8


@dataclass
class QrConfig:
    """QR code flow timing."""

    timeout: float = 30.0  # wait for the first QR payload
    welcome_delay: float = 1.5
    close_dwell: float = 10.0  # keep the socket open after linking
    reconnect_grace: float = 30.0  # keep credentials after close


@dataclass
class CleanupConfig:
    """Stale credential sweep configuration."""

    stale_after: float = 3600.0  # seconds
    sweep_interval: float = 0.0  # 0 disables the periodic sweep


@dataclass
class IdsConfig:
    """Session identifier configuration."""

    prefix: str = "DEVLINK"
    version: str = "V1"
    session_timeout_ms: int = 1_800_000  # 30 minutes


@dataclass
class Config:
    """Server configuration."""

    port: int = 3000
    bind_address: str = "0.0.0.0"
    sessions_dir: str = "./sessions"
    log_level: str = "INFO"
    log_file: str | None = None
    socket_factory: str | None = None  # "module:attribute"
    welcome_text: str = DEFAULT_WELCOME_TEXT
    pairing: PairingConfig = field(default_factory=PairingConfig)
    qr: QrConfig = field(default_factory=QrConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    ids: IdsConfig = field(default_factory=IdsConfig)


CONFIG_ENV_VAR = "DEVLINK_CONFIG"


def get_config_path(custom_path: Path | None = None) -> Path:
    """Resolve which YAML file to read.

    An explicit path wins, then ``$DEVLINK_CONFIG``, then
    ``~/.config/devlink/config.yaml``.
    """
    if custom_path is not None:
        return custom_path
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path.home() / ".config" / "devlink" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    # Missing, blank and malformed files all mean "use the defaults"
    if not path.is_file():
        return None
    try:
        return yaml.safe_load(path.read_text()) or None
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Build a Config from the devlink YAML file.

    Top-level keys (``port``, ``bind_address``, ``sessions_dir``,
    ``log_level``, ``log_file``, ``socket_factory``, ``welcome_text``) map
    onto Config directly. The nested ``pairing``, ``qr``, ``cleanup`` and
    ``ids`` mappings fill their own sections. Any key left out keeps its
    default, and a file that is absent or not a mapping yields ``Config()``.

    Args:
        path: Explicit file; see get_config_path for the fallbacks.
        file_reader: Replaces the disk read, so tests can pass a dict.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    pairing_data = data.get("pairing") or {}
    pairing_config = PairingConfig(
        welcome_delay=pairing_data.get("welcome_delay", PairingConfig.welcome_delay),
        close_delay=pairing_data.get("close_delay", PairingConfig.close_delay),
        cleanup_delay=pairing_data.get("cleanup_delay", PairingConfig.cleanup_delay),
        min_digits=pairing_data.get("min_digits", PairingConfig.min_digits),
    )

    qr_data = data.get("qr") or {}
    qr_config = QrConfig(
        timeout=qr_data.get("timeout", QrConfig.timeout),
        welcome_delay=qr_data.get("welcome_delay", QrConfig.welcome_delay),
        close_dwell=qr_data.get("close_dwell", QrConfig.close_dwell),
        reconnect_grace=qr_data.get("reconnect_grace", QrConfig.reconnect_grace),
    )

    cleanup_data = data.get("cleanup") or {}
    cleanup_config = CleanupConfig(
        stale_after=cleanup_data.get("stale_after", CleanupConfig.stale_after),
        sweep_interval=cleanup_data.get(
            "sweep_interval", CleanupConfig.sweep_interval
        ),
    )

    ids_data = data.get("ids") or {}
    ids_config = IdsConfig(
        prefix=ids_data.get("prefix", IdsConfig.prefix),
        version=ids_data.get("version", IdsConfig.version),
        session_timeout_ms=ids_data.get(
            "session_timeout_ms", IdsConfig.session_timeout_ms
        ),
    )

    return Config(
        port=data.get("port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        sessions_dir=data.get("sessions_dir", Config.sessions_dir),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        socket_factory=data.get("socket_factory", Config.socket_factory),
        welcome_text=data.get("welcome_text", DEFAULT_WELCOME_TEXT),
        pairing=pairing_config,
        qr=qr_config,
        cleanup=cleanup_config,
        ids=ids_config,
    )
