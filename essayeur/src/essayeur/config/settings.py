"""
Essayeur configuration with hybrid YAML + ENV support.

Architecture:
- Project layout (contracts, migrations, tests, build output)
- Networks the tests may target (wildcard network id allowed)
- Local node launch command for the ephemeral chain

Priority: YAML config > Environment variables > Pydantic defaults
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_FILE = "essayeur.yaml"
NETWORK_WILDCARD = "*"


class NetworkConfig(BaseModel):
    """Connection parameters for one named network."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8545, ge=1, le=65535)
    network_id: str = Field(default=NETWORK_WILDCARD)
    from_address: Optional[str] = Field(default=None)
    gas: int = Field(default=6721975, ge=21000)
    gas_price: int = Field(default=20_000_000_000, ge=0)

    @computed_field
    @property
    def url(self) -> str:
        """JSON-RPC endpoint URL."""
        return f"http://{self.host}:{self.port}"

    @field_validator("network_id", mode="before")
    @classmethod
    def coerce_network_id(cls, v: Any) -> str:
        """Accept integer ids from YAML."""
        return str(v)

    def matches(self, network_id: Any) -> bool:
        """Check a chain-reported network id against this config."""
        return self.network_id == NETWORK_WILDCARD or self.network_id == str(
            network_id
        )


class NodeConfig(BaseModel):
    """Local chain node launch configuration."""

    command: List[str] = Field(
        default_factory=lambda: ["ganache", "--port", "{port}"],
        description="Node command; '{port}' is substituted. Empty = attach",
    )
    startup_timeout: float = Field(default=30.0, ge=1.0, le=300.0)


class EssayeurConfig(BaseSettings):
    """
    Essayeur configuration schema.

    Per-run values (files, reset, quiet) are never set by the user; the
    pipeline passes them through with_overrides().
    """

    model_config = SettingsConfigDict(
        env_prefix="ESSAYEUR_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="allow",
    )

    # Project layout
    working_directory: Path = Field(default_factory=Path.cwd)
    build_directory: str = Field(default=".test")
    contracts_directory: str = Field(default="contracts")
    migrations_directory: str = Field(default="migrations")
    test_directory: str = Field(default="test")

    # Networks
    networks: Dict[str, NetworkConfig] = Field(
        default_factory=lambda: {"test": NetworkConfig()}
    )
    network: str = Field(default="test")
    node: NodeConfig = Field(default_factory=NodeConfig)

    # Pipeline behavior
    poll_interval: float = Field(default=0.1, ge=0.01, le=10.0)
    compile_all: bool = Field(default=False)
    max_workers: int = Field(default=4, ge=1, le=64)
    solc_binary: str = Field(default="solc")

    # Logging
    log_level: str = Field(default="info")
    log_dir: Optional[str] = Field(default=None)

    # Per-run overrides
    files: List[Path] = Field(default_factory=list)
    reset: bool = Field(default=False)
    quiet: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["debug", "info", "warning", "error", "critical"]
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"Invalid log_level. Must be one of: {allowed}")
        return v_lower

    @field_validator("working_directory")
    @classmethod
    def resolve_working_directory(cls, v: Path) -> Path:
        """Store the working directory as an absolute path."""
        return Path(os.path.expanduser(str(v))).resolve()

    @property
    def network_config(self) -> NetworkConfig:
        """Config of the selected network."""
        if self.network not in self.networks:
            raise ValueError(
                f"Unknown network '{self.network}'. "
                f"Available: {sorted(self.networks)}"
            )
        return self.networks[self.network]

    @property
    def build_path(self) -> Path:
        return self.working_directory / self.build_directory

    @property
    def contracts_path(self) -> Path:
        return self.working_directory / self.contracts_directory

    @property
    def migrations_path(self) -> Path:
        return self.working_directory / self.migrations_directory

    @property
    def test_path(self) -> Path:
        return self.working_directory / self.test_directory

    @property
    def from_address(self) -> Optional[str]:
        """Default sender for transactions on the selected network."""
        return self.network_config.from_address

    def with_overrides(self, **overrides: Any) -> "EssayeurConfig":
        """
        Return a copy with the given fields replaced.

        Args:
            **overrides: Field values for the copy

        Returns:
            New EssayeurConfig; self is untouched
        """
        return self.model_copy(update=overrides)

    def with_from_address(self, address: str) -> "EssayeurConfig":
        """Return a copy whose selected network sends from address."""
        networks = dict(self.networks)
        networks[self.network] = self.network_config.model_copy(
            update={"from_address": address}
        )
        return self.with_overrides(networks=networks)


def load_config(
    config_file: Optional[str] = None,
    working_directory: Optional[Path] = None,
) -> EssayeurConfig:
    """
    Load configuration from the project's YAML file.

    Loads .env from the working directory first so ESSAYEUR_* variables
    defined there take part. YAML values are passed as init arguments and
    therefore win over environment variables.

    Args:
        config_file: Optional YAML path (absolute or relative to the
                     working directory). Defaults to ESSAYEUR_CONFIG or
                     essayeur.yaml.
        working_directory: Project root (default: cwd)

    Returns:
        EssayeurConfig instance

    Raises:
        FileNotFoundError: If an explicitly requested config file is missing
    """
    project_root = Path(working_directory or Path.cwd()).resolve()

    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    explicit = config_file or os.getenv("ESSAYEUR_CONFIG")
    config_path = project_root / (explicit or DEFAULT_CONFIG_FILE)

    merged_config: Dict[str, Any] = {}

    if config_path.exists():
        with open(config_path, "r") as f:
            loaded = yaml.safe_load(f)
            if loaded:
                merged_config.update(loaded)
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Relative working_directory in YAML is relative to the project root
    merged_config["working_directory"] = project_root / merged_config.get(
        "working_directory", "."
    )

    return EssayeurConfig(**merged_config)
