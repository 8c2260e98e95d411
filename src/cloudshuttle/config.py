"""
Configuration system for storage profiles and transfer settings.

Provides:
- YAML-based profile configuration with ${VAR} / ${VAR:default} substitution
- Environment-only configuration (CLOUDSHUTTLE_* variables, .env files)
- ProviderFactory mapping profile types to adapter classes
- ProfileManager holding the active profile and its cached adapter
"""

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .logging_utils import SensitiveDataMasker
from .models import Profile, ProviderType
from .providers import ADAPTERS, ProviderAdapter
from .settings import TransferSettings

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".cloudshuttle"

ENV_PREFIX = "CLOUDSHUTTLE_"
ENV_CREDENTIAL_PREFIX = "CLOUDSHUTTLE_CRED_"


@dataclass
class AppConfig:
    """Everything needed to build a StorageService."""
    profiles: List[Profile] = field(default_factory=list)
    active_profile: Optional[str] = None
    settings: TransferSettings = field(default_factory=TransferSettings)
    task_store_path: Path = DEFAULT_STATE_DIR / "tasks.json"
    activity_db_path: Path = DEFAULT_STATE_DIR / "activity.db"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "active_profile": self.active_profile,
            "settings": self.settings.to_dict(),
            "task_store": str(self.task_store_path),
            "activity_db": str(self.activity_db_path),
            "profiles": [p.to_dict() for p in self.profiles],
        }


class ProviderFactory:
    """Factory for creating provider adapters."""

    @staticmethod
    def adapter_class(provider_type: ProviderType) -> Type[ProviderAdapter]:
        try:
            return ADAPTERS[ProviderType(provider_type)]
        except (KeyError, ValueError):
            raise ConfigurationError(f"Unknown provider type: {provider_type}")

    @staticmethod
    def create(profile: Profile, settings: Optional[TransferSettings] = None) -> ProviderAdapter:
        """
        Create an adapter for a profile.

        Args:
            profile: Profile to connect with
            settings: Transfer settings shared by all adapters

        Returns:
            ProviderAdapter instance (no network call is made)

        Raises:
            ConfigurationError: If the type is unknown or fields are missing
        """
        adapter_cls = ProviderFactory.adapter_class(profile.type)
        adapter = adapter_cls(profile, settings)
        logger.info(f"Created {profile.type.value} adapter for profile '{profile.id}'")
        logger.debug(f"Profile '{profile.id}' credentials: {SensitiveDataMasker.mask_dict(profile.credentials)}")
        return adapter


class ConfigManager:
    """Manages configuration loading and storage."""

    @staticmethod
    def load_yaml(config_path: Path) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If config is invalid YAML
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}

        logger.info(f"Loaded configuration from {config_path}")
        return config

    @staticmethod
    def save_yaml(config: Dict[str, Any], config_path: Path) -> None:
        """
        Save configuration to YAML file.

        Args:
            config: Configuration dictionary
            config_path: Path to write YAML file
        """
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Saved configuration to {config_path}")

    @staticmethod
    def create_profile(profile_dict: Dict[str, Any]) -> Profile:
        """
        Create a Profile from a dictionary.

        Raises:
            ConfigurationError: If id or type is missing or the type is unknown
        """
        profile_dict = ConfigManager._substitute_env_vars(profile_dict)

        profile_id = str(profile_dict.get("id") or "").strip()
        type_name = str(profile_dict.get("type") or "").strip().lower()
        if not profile_id:
            raise ConfigurationError("'id' field is required for every profile")
        if not type_name:
            raise ConfigurationError(f"Profile '{profile_id}' has no 'type'")
        try:
            provider_type = ProviderType(type_name)
        except ValueError:
            raise ConfigurationError(f"Profile '{profile_id}' has unknown type: {type_name}")

        quota = profile_dict.get("storage_quota_bytes")
        if quota is None and profile_dict.get("storage_quota_gb") is not None:
            quota = int(float(profile_dict["storage_quota_gb"]) * 1024 ** 3)

        return Profile(
            id=profile_id,
            type=provider_type,
            credentials=dict(profile_dict.get("credentials") or {}),
            bucket=profile_dict.get("bucket"),
            region=profile_dict.get("region"),
            public_domain=profile_dict.get("public_domain"),
            storage_quota_bytes=int(quota) if quota not in (None, "") else None,
            name=profile_dict.get("name"),
        )

    @staticmethod
    def create_app_config(config_dict: Dict[str, Any]) -> AppConfig:
        """Create AppConfig from a configuration dictionary."""
        config_dict = ConfigManager._substitute_env_vars(config_dict or {})

        profiles = [ConfigManager.create_profile(p) for p in config_dict.get("profiles") or []]
        ids = [p.id for p in profiles]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate profile ids: {', '.join(duplicates)}")

        active = config_dict.get("active_profile")
        if active is None and len(profiles) == 1:
            active = profiles[0].id

        state_dir = Path(config_dict.get("state_dir") or DEFAULT_STATE_DIR).expanduser()
        return AppConfig(
            profiles=profiles,
            active_profile=active,
            settings=TransferSettings.from_dict(config_dict.get("settings") or {}),
            task_store_path=Path(config_dict.get("task_store") or state_dir / "tasks.json").expanduser(),
            activity_db_path=Path(config_dict.get("activity_db") or state_dir / "activity.db").expanduser(),
        )

    @staticmethod
    def load(config_path: Path) -> AppConfig:
        """Load an AppConfig from a YAML file."""
        return ConfigManager.create_app_config(ConfigManager.load_yaml(config_path))

    @staticmethod
    def from_env(env_file: Optional[str] = ".env") -> AppConfig:
        """
        Create an AppConfig from environment variables.

        A ``.env`` file is loaded first when present. If
        ``CLOUDSHUTTLE_CONFIG`` names a YAML file, that file is used instead.

        Expected environment variables:
        - CLOUDSHUTTLE_PROFILE_TYPE: s3compat, oss, cos, smms or lsky
        - CLOUDSHUTTLE_BUCKET, CLOUDSHUTTLE_REGION, CLOUDSHUTTLE_PUBLIC_DOMAIN
        - CLOUDSHUTTLE_CRED_<FIELD>: credential fields, e.g.
          CLOUDSHUTTLE_CRED_ACCESS_KEY_ID
        - CLOUDSHUTTLE_DOWNLOAD_DIR, CLOUDSHUTTLE_MAX_TRANSFERS,
          CLOUDSHUTTLE_STATE_DIR: optional

        Raises:
            ConfigurationError: If no profile type is configured
        """
        if env_file and os.path.exists(env_file):
            load_dotenv(env_file)
            logger.debug(f"Loaded environment variables from {env_file}")

        config_path = os.getenv(f"{ENV_PREFIX}CONFIG")
        if config_path:
            return ConfigManager.load(Path(config_path).expanduser())

        provider = os.getenv(f"{ENV_PREFIX}PROFILE_TYPE")
        if not provider:
            raise ConfigurationError(
                f"Set {ENV_PREFIX}CONFIG or {ENV_PREFIX}PROFILE_TYPE to configure a profile"
            )

        credentials = {
            name[len(ENV_CREDENTIAL_PREFIX):].lower(): value
            for name, value in os.environ.items()
            if name.startswith(ENV_CREDENTIAL_PREFIX)
        }
        settings: Dict[str, Any] = {}
        if os.getenv(f"{ENV_PREFIX}DOWNLOAD_DIR"):
            settings["download_dir"] = os.environ[f"{ENV_PREFIX}DOWNLOAD_DIR"]
        if os.getenv(f"{ENV_PREFIX}MAX_TRANSFERS"):
            settings["max_concurrent_transfers"] = int(os.environ[f"{ENV_PREFIX}MAX_TRANSFERS"])

        return ConfigManager.create_app_config({
            "active_profile": "env",
            "state_dir": os.getenv(f"{ENV_PREFIX}STATE_DIR"),
            "settings": settings,
            "profiles": [{
                "id": "env",
                "type": provider,
                "bucket": os.getenv(f"{ENV_PREFIX}BUCKET"),
                "region": os.getenv(f"{ENV_PREFIX}REGION"),
                "public_domain": os.getenv(f"{ENV_PREFIX}PUBLIC_DOMAIN"),
                "credentials": credentials,
            }],
        })

    @staticmethod
    def _substitute_env_vars(config: Any) -> Any:
        """
        Recursively substitute environment variables in config.

        Format: ${VAR_NAME} or ${VAR_NAME:default_value}
        """
        if isinstance(config, dict):
            return {k: ConfigManager._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [ConfigManager._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            def replacer(match):
                var_spec = match.group(1)
                if ":" in var_spec:
                    var_name, default = var_spec.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip())
                return os.getenv(var_spec, match.group(0))

            return re.sub(r"\$\{([^}]+)\}", replacer, config)
        else:
            return config


class ProfileManager:
    """
    Holds the configured profiles, the active one and its adapter.

    The adapter is built once per active profile and reused until the
    profile is switched.
    """

    def __init__(
        self,
        profiles: List[Profile],
        active_profile: Optional[str] = None,
        settings: Optional[TransferSettings] = None,
        factory: Callable[[Profile, TransferSettings], ProviderAdapter] = ProviderFactory.create,
    ):
        self._profiles = {p.id: p for p in profiles}
        self.settings = settings or TransferSettings()
        self._factory = factory
        self._active_id: Optional[str] = None
        self._adapter: Optional[ProviderAdapter] = None
        self._lock = threading.Lock()
        if active_profile:
            self._check_exists(active_profile)
            self._active_id = active_profile

    def _check_exists(self, profile_id: str) -> Profile:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise ConfigurationError(f"Unknown profile: {profile_id}")
        return profile

    @property
    def profiles(self) -> List[Profile]:
        return list(self._profiles.values())

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active_profile(self) -> Profile:
        """
        The active profile.

        Raises:
            ConfigurationError: If no profile is active
        """
        if self._active_id is None:
            raise ConfigurationError("No active profile configured")
        return self._profiles[self._active_id]

    def adapter(self) -> ProviderAdapter:
        """Cached adapter for the active profile, built on first use."""
        with self._lock:
            if self._adapter is None:
                self._adapter = self._factory(self.active_profile, self.settings)
            return self._adapter

    def switch(self, profile_id: str, transfers_in_flight: int = 0) -> Profile:
        """
        Make ``profile_id`` the active profile and drop the cached adapter.

        Raises:
            ConfigurationError: If the profile is unknown or transfers are
                still running against the current profile
        """
        profile = self._check_exists(profile_id)
        if profile_id == self._active_id:
            return profile
        if transfers_in_flight:
            raise ConfigurationError(
                f"Cannot switch to '{profile_id}' while {transfers_in_flight} transfers are in progress"
            )
        with self._lock:
            self._active_id = profile_id
            old, self._adapter = self._adapter, None
        if old is not None:
            old.close()
        logger.info(f"Active profile is now '{profile_id}' ({profile.type.value})")
        return profile

    def close(self) -> None:
        with self._lock:
            old, self._adapter = self._adapter, None
        if old is not None:
            old.close()
