"""
Configuration management for ClaimDesk.

Handles global configuration loading from TOML files, environment variable
overrides for secrets, and encrypted on-disk storage of vendor credentials.
"""

from pathlib import Path
from typing import Dict, Any, Optional, List
import tomllib
import json
import base64
from dataclasses import dataclass
from cryptography.fernet import Fernet
import os


def _config_home() -> Path:
    """Resolve the configuration directory, honouring CLAIMDESK_HOME."""
    override = os.environ.get("CLAIMDESK_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".claimdesk"


@dataclass
class GlobalConfig:
    """Global application configuration."""

    server_host: str = "127.0.0.1"
    server_port: int = 8000
    public_base_url: str = "http://127.0.0.1:8000"

    data_root: Path = Path.home() / "ClaimDesk"
    database_path: Path = Path.home() / "ClaimDesk" / "claimdesk.db"
    storage_root: Path = Path.home() / "ClaimDesk" / "claim-files"

    company_name: str = "Freedom Claims"
    claim_email_domain: str = "claims.freedomclaims.work"

    llm_base_url: str = "https://ai.gateway.lovable.dev/v1"
    llm_model: str = "google/gemini-3-flash-preview"
    llm_api_key: str = ""
    llm_temperature: float = 0.3
    llm_max_tokens: int = 1500

    search_base_url: str = "https://api.perplexity.ai"
    search_model: str = "sonar"
    search_api_key: str = ""
    search_max_queries: int = 3

    email_base_url: str = "https://api.resend.com"
    email_api_key: str = ""
    email_from: str = "Freedom Claims <claims@freedomclaims.work>"

    sms_base_url: str = "https://api.telnyx.com"
    sms_api_key: str = ""
    sms_from_number: str = ""

    cron_secret: str = ""
    automation_batch_size: int = 10

    industry_note_ttl_days: int = 30
    default_state_code: str = "NJ"


# Environment variables that override secrets in the config file
ENV_OVERRIDES = {
    "llm_api_key": "CLAIMDESK_LLM_API_KEY",
    "search_api_key": "CLAIMDESK_SEARCH_API_KEY",
    "email_api_key": "CLAIMDESK_EMAIL_API_KEY",
    "sms_api_key": "CLAIMDESK_SMS_API_KEY",
    "sms_from_number": "CLAIMDESK_SMS_FROM_NUMBER",
    "cron_secret": "CLAIMDESK_CRON_SECRET",
}


class Settings:
    """Settings management singleton."""

    _instance: Optional['Settings'] = None
    _global_config: GlobalConfig
    _config_path: Path
    _credentials_path: Path
    _encryption_key: bytes

    def __new__(cls) -> 'Settings':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self) -> None:
        """Initialize settings from configuration files."""
        home = _config_home()
        self._config_path = home / "config.toml"
        self._credentials_path = home / "credentials.json"
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._setup_encryption()
        self._load_global_config()

    def _setup_encryption(self) -> None:
        """Set up encryption for secure credential storage."""
        key_file = self._config_path.parent / ".key"

        if key_file.exists():
            with open(key_file, 'rb') as f:
                self._encryption_key = f.read()
        else:
            self._encryption_key = Fernet.generate_key()
            with open(key_file, 'wb') as f:
                f.write(self._encryption_key)
            os.chmod(key_file, 0o600)

    def _load_global_config(self) -> None:
        """Load global configuration with defaults."""
        if self._config_path.exists():
            try:
                with open(self._config_path, "rb") as f:
                    config_data = tomllib.load(f)
                self._global_config = self._merge_config(config_data)
            except (OSError, tomllib.TOMLDecodeError) as e:
                print(f"Warning: Failed to load config from {self._config_path}: {e}")
                self._global_config = GlobalConfig()
        else:
            self._global_config = GlobalConfig()
            self._save_global_config()

        self._apply_env_overrides()

    def _merge_config(self, config_data: Dict[str, Any]) -> GlobalConfig:
        """Merge configuration data with defaults."""
        config = GlobalConfig()

        if "server" in config_data:
            server_config = config_data["server"]
            config.server_host = server_config.get("host", config.server_host)
            config.server_port = server_config.get("port", config.server_port)
            config.public_base_url = server_config.get("public_base_url", config.public_base_url)

        if "paths" in config_data:
            paths_config = config_data["paths"]
            if "root" in paths_config:
                config.data_root = Path(paths_config["root"]).expanduser()
                config.database_path = config.data_root / "claimdesk.db"
                config.storage_root = config.data_root / "claim-files"
            if "database" in paths_config:
                config.database_path = Path(paths_config["database"]).expanduser()
            if "storage" in paths_config:
                config.storage_root = Path(paths_config["storage"]).expanduser()

        if "company" in config_data:
            config.company_name = config_data["company"].get("name", config.company_name)
            config.claim_email_domain = config_data["company"].get("claim_email_domain", config.claim_email_domain)

        if "llm" in config_data:
            llm_config = config_data["llm"]
            config.llm_base_url = llm_config.get("base_url", config.llm_base_url)
            config.llm_model = llm_config.get("model", config.llm_model)
            config.llm_api_key = llm_config.get("api_key", config.llm_api_key)
            config.llm_temperature = llm_config.get("temperature", config.llm_temperature)
            config.llm_max_tokens = llm_config.get("max_tokens", config.llm_max_tokens)

        if "search" in config_data:
            search_config = config_data["search"]
            config.search_base_url = search_config.get("base_url", config.search_base_url)
            config.search_model = search_config.get("model", config.search_model)
            config.search_api_key = search_config.get("api_key", config.search_api_key)
            config.search_max_queries = search_config.get("max_queries", config.search_max_queries)

        if "email" in config_data:
            email_config = config_data["email"]
            config.email_base_url = email_config.get("base_url", config.email_base_url)
            config.email_api_key = email_config.get("api_key", config.email_api_key)
            config.email_from = email_config.get("from", config.email_from)

        if "sms" in config_data:
            sms_config = config_data["sms"]
            config.sms_base_url = sms_config.get("base_url", config.sms_base_url)
            config.sms_api_key = sms_config.get("api_key", config.sms_api_key)
            config.sms_from_number = sms_config.get("from_number", config.sms_from_number)

        if "automations" in config_data:
            automation_config = config_data["automations"]
            config.cron_secret = automation_config.get("cron_secret", config.cron_secret)
            config.automation_batch_size = automation_config.get("batch_size", config.automation_batch_size)

        if "pipeline" in config_data:
            pipeline_config = config_data["pipeline"]
            config.industry_note_ttl_days = pipeline_config.get(
                "industry_note_ttl_days", config.industry_note_ttl_days
            )
            config.default_state_code = pipeline_config.get("default_state_code", config.default_state_code)

        return config

    def _apply_env_overrides(self) -> None:
        """Let environment variables win over file values for secrets."""
        for attribute, env_name in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                setattr(self._global_config, attribute, value)

    def _save_global_config(self) -> None:
        """Save current global configuration to TOML file."""
        config_toml = f"""[server]
host = "{self._global_config.server_host}"
port = {self._global_config.server_port}
public_base_url = "{self._global_config.public_base_url}"

[paths]
root = "{self._global_config.data_root}"
database = "{self._global_config.database_path}"
storage = "{self._global_config.storage_root}"

[company]
name = "{self._global_config.company_name}"
claim_email_domain = "{self._global_config.claim_email_domain}"

[llm]
base_url = "{self._global_config.llm_base_url}"
model = "{self._global_config.llm_model}"
api_key = ""
temperature = {self._global_config.llm_temperature}
max_tokens = {self._global_config.llm_max_tokens}

[search]
base_url = "{self._global_config.search_base_url}"
model = "{self._global_config.search_model}"
api_key = ""
max_queries = {self._global_config.search_max_queries}

[email]
base_url = "{self._global_config.email_base_url}"
api_key = ""
from = "{self._global_config.email_from}"

[sms]
base_url = "{self._global_config.sms_base_url}"
api_key = ""
from_number = "{self._global_config.sms_from_number}"

[automations]
cron_secret = ""
batch_size = {self._global_config.automation_batch_size}

[pipeline]
industry_note_ttl_days = {self._global_config.industry_note_ttl_days}
default_state_code = "{self._global_config.default_state_code}"
"""

        with open(self._config_path, "w") as f:
            f.write(config_toml)

    @property
    def config_dir(self) -> Path:
        """Directory holding config, key and credential files."""
        return self._config_path.parent

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    def update_global_config(self, **kwargs) -> None:
        """Update global configuration values."""
        for key, value in kwargs.items():
            if hasattr(self._global_config, key):
                setattr(self._global_config, key, value)
        self._save_global_config()

    def get_secret(self, attribute: str, provider: str, credential_type: str = "api_key") -> str:
        """
        Resolve a vendor secret.

        Lookup order: environment variable, encrypted credential store,
        then the config file value.
        """
        env_name = ENV_OVERRIDES.get(attribute)
        if env_name and os.environ.get(env_name):
            return os.environ[env_name]
        stored = self.get_credential(provider, credential_type)
        if stored:
            return stored
        return getattr(self._global_config, attribute, "") or ""

    def store_credential(self, provider: str, credential_type: str, credential_value: str) -> bool:
        """Store encrypted credential for a provider."""
        try:
            credentials = self._load_credentials()

            fernet = Fernet(self._encryption_key)
            encrypted_value = fernet.encrypt(credential_value.encode())

            if provider not in credentials:
                credentials[provider] = {}

            credentials[provider][credential_type] = base64.b64encode(encrypted_value).decode()

            self._save_credentials(credentials)
            return True

        except (OSError, ValueError) as e:
            print(f"Error: Failed to store credential: {e}")
            return False

    def get_credential(self, provider: str, credential_type: str) -> Optional[str]:
        """Get decrypted credential for a provider."""
        try:
            credentials = self._load_credentials()

            if provider not in credentials or credential_type not in credentials[provider]:
                return None

            fernet = Fernet(self._encryption_key)
            encrypted_value = base64.b64decode(credentials[provider][credential_type])
            return fernet.decrypt(encrypted_value).decode()

        except Exception as e:
            print(f"Error: Failed to get credential: {e}")
            return None

    def delete_credential(self, provider: str, credential_type: str) -> bool:
        """Delete a stored credential."""
        try:
            credentials = self._load_credentials()

            if provider in credentials and credential_type in credentials[provider]:
                del credentials[provider][credential_type]

                if not credentials[provider]:
                    del credentials[provider]

                self._save_credentials(credentials)

            return True

        except OSError as e:
            print(f"Error: Failed to delete credential: {e}")
            return False

    def list_stored_credentials(self) -> Dict[str, List[str]]:
        """List all stored credentials by provider."""
        credentials = self._load_credentials()
        return {
            provider: list(creds.keys())
            for provider, creds in credentials.items()
        }

    def _load_credentials(self) -> Dict[str, Dict[str, str]]:
        """Load encrypted credentials from disk."""
        if self._credentials_path.exists():
            try:
                with open(self._credentials_path, 'r') as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError):
                return {}
        return {}

    def _save_credentials(self, credentials: Dict[str, Dict[str, str]]) -> None:
        """Save encrypted credentials to disk."""
        with open(self._credentials_path, 'w') as f:
            json.dump(credentials, f, indent=2)
        os.chmod(self._credentials_path, 0o600)


# Global settings instance
settings = Settings()
