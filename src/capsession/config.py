"""
capsession Host Configuration

YAML-based host configuration: where sessions are stored, which interface and
system to use by default, which external tools to run, and which system
identifiers the sync mechanism recognizes.

Lookup order for the configuration file:
    1. Explicit path (--config)
    2. $CAPSESSION_CONFIG
    3. ~/.config/capsession/host.yaml
    4. /etc/capsession/host.yaml
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger("capsession.config")

# Environment variables
ENV_CONFIG = 'CAPSESSION_CONFIG'
ENV_LOG_ROOT = 'CAPSESSION_LOG_ROOT'
ENV_SYSTEM = 'CAPSESSION_SYSTEM'
ENV_INTERFACE = 'CAPSESSION_INTERFACE'

# Hard-coded fallbacks, used when neither argument, environment nor config
# file supplies a value
DEFAULT_SYSTEM = 'default'
DEFAULT_INTERFACE = 'any'

DEFAULT_CONFIG_PATHS = [
    Path.home() / '.config' / 'capsession' / 'host.yaml',
    Path('/etc/capsession/host.yaml'),
]


def check_system_name(name: str):
    """Reject system names that are not a plain directory name under the log root."""
    if not name or name.startswith('.') or '/' in name or '\\' in name or '\0' in name:
        raise ConfigError(f"Invalid system name: {name!r}")


@dataclass
class HostConfig:
    """Configuration for one capture host."""

    # Storage
    log_root: Path = field(default_factory=lambda: Path.home() / 'capture-logs')

    # Defaults for `start`
    default_system: Optional[str] = None
    default_interface: Optional[str] = None

    # Recognized system identifiers (inline list and/or sync-list file)
    systems: List[str] = field(default_factory=list)
    systems_file: Optional[Path] = None

    # External tools
    capture_binary: str = 'tcpdump'
    postprocess_binary: str = 'pcap-postprocess'
    rotate_hook: Optional[str] = None  # None -> postprocess_binary
    rotate_seconds: int = 3600

    # Session contents
    format_descriptor: Optional[Path] = None
    source_dir: Path = field(default_factory=Path.cwd)

    # Process handling
    start_grace_seconds: float = 1.0
    stop_timeout_seconds: float = 5.0
    nice_level: int = 19

    # Where this configuration came from (None = built-in defaults)
    source: Optional[Path] = None

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'HostConfig':
        """Load configuration from YAML file."""
        path = Path(yaml_path).expanduser()
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"Unexpected format in {path}. "
                f"Expected a mapping, got {type(data).__name__}"
            )

        config = cls.from_dict(data)
        config.source = path
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HostConfig':
        """Create configuration from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)} - {'source'}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ', '.join(unknown))

        kwargs = {k: v for k, v in data.items() if k in known and v is not None}

        for key in ('log_root', 'systems_file', 'format_descriptor', 'source_dir'):
            if key in kwargs:
                kwargs[key] = Path(str(kwargs[key])).expanduser()

        if 'systems' in kwargs:
            systems = kwargs['systems']
            if not isinstance(systems, list):
                raise ConfigError(f"'systems' must be a list, got {type(systems).__name__}")
            kwargs['systems'] = [str(s) for s in systems]

        try:
            for key in ('rotate_seconds', 'nice_level'):
                if key in kwargs:
                    kwargs[key] = int(kwargs[key])
            for key in ('start_grace_seconds', 'stop_timeout_seconds'):
                if key in kwargs:
                    kwargs[key] = float(kwargs[key])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric config value: {e}")

        if kwargs.get('rotate_seconds', 1) <= 0:
            raise ConfigError("'rotate_seconds' must be positive")

        return cls(**kwargs)

    @classmethod
    def load(cls, config_path: Optional[str] = None,
             env: Optional[Dict[str, str]] = None) -> 'HostConfig':
        """
        Locate and load the host configuration.

        Args:
            config_path: Explicit config file path (must exist if given)
            env: Environment variables (defaults to os.environ)

        Returns:
            HostConfig, built-in defaults if no config file is found
        """
        env = dict(os.environ) if env is None else env

        if config_path:
            config = cls.from_yaml(config_path)
        elif env.get(ENV_CONFIG):
            config = cls.from_yaml(env[ENV_CONFIG])
        else:
            config = None
            for candidate in DEFAULT_CONFIG_PATHS:
                if candidate.is_file():
                    config = cls.from_yaml(str(candidate))
                    break
            if config is None:
                logger.debug("No host config found, using defaults")
                config = cls()

        if env.get(ENV_LOG_ROOT):
            config.log_root = Path(env[ENV_LOG_ROOT]).expanduser()

        logger.debug("Using log root %s (config: %s)", config.log_root, config.source)
        return config

    @property
    def hook_binary(self) -> str:
        """Command tcpdump runs on every rotated capture file."""
        return self.rotate_hook or self.postprocess_binary

    def resolve_system(self, system: Optional[str] = None,
                       env: Optional[Dict[str, str]] = None) -> str:
        """
        Resolve the target system: argument > environment > config > default.

        Raises:
            ConfigError: If the name cannot be used as a single directory name
        """
        env = dict(os.environ) if env is None else env
        name = system or env.get(ENV_SYSTEM) or self.default_system or DEFAULT_SYSTEM
        check_system_name(name)
        return name

    def resolve_interface(self, interface: Optional[str] = None,
                          env: Optional[Dict[str, str]] = None) -> str:
        """Resolve the capture interface: argument > environment > config > default."""
        env = dict(os.environ) if env is None else env
        return interface or env.get(ENV_INTERFACE) or self.default_interface or DEFAULT_INTERFACE
