"""Configuration file loading.

The file lists, per environment, the bastion host with its connections and
the pod forwarding rules, plus the locations of cloud and cluster
credentials::

    environment: dev
    cloud:
      kubeconfig: ~/.kube/config
      gcloudconfig: ~/.config/gcloud
    proxies:
      - environment: dev
        cloud_project: my-project
        bastion:
          name: bastion-dev
          connections:
            - local_port: 5432
              remote_host: 10.0.0.1
              remote_port: 5432
        workloads:
          - namespace: default
            app: api
            local_port: 8080
            remote_port: 80
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .common.exceptions import ConfigError
from .common.logging import get_logger
from .models import Bastion, ForwardRule, RuleSet

logger = get_logger(__name__)

DEFAULT_CONFIG_DIR = ".devcli"
DEFAULT_CONFIG_FILE = "config.yaml"


class CloudConfig(BaseModel):
    """Credential locations handed to gcloud and kubectl."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    gcloudconfig: str | None = Field(default=None, description="CLOUDSDK_CONFIG directory")
    kubeconfig: str | None = Field(default=None, description="KUBECONFIG file")


class ProxyConfig(BaseModel):
    """Tunnels of one environment."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    environment: str = Field(min_length=1)
    cloud_project: str | None = None
    bastion: Bastion | None = None
    workloads: list[ForwardRule] = Field(default_factory=list)

    def to_rule_set(self) -> RuleSet:
        return RuleSet(rules=tuple(self.workloads), bastion=self.bastion)


class DevConfig(BaseModel):
    """Top level configuration document."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    environment: str | None = None
    cloud: CloudConfig = Field(default_factory=CloudConfig)
    proxies: list[ProxyConfig] = Field(default_factory=list)

    def select(self, environment: str | None = None) -> ProxyConfig:
        """Return the proxy configuration of the active environment.

        Args:
            environment: Overrides the environment named in the file

        Raises:
            ConfigError: If no environment is set or none of the proxies match
        """
        environment = environment or self.environment
        if not environment:
            raise ConfigError(
                "Environment is not set in the configuration file or passed as a command line argument"
            )

        for proxy in self.proxies:
            if proxy.environment == environment:
                return proxy

        raise ConfigError(f"Proxy configuration for environment {environment} is not found")


def default_config_path() -> Path:
    return Path.home() / DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def ensure_default_config(path: Path | None = None) -> Path:
    """Create an empty configuration file at the default location if missing."""
    path = path or default_config_path()
    if path.exists():
        return path

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("")
    except OSError as e:
        raise ConfigError(f"Error creating default configuration file {path}: {e}") from e

    logger.info("Created empty configuration file", path=str(path))
    return path


def load_config(path: Path | str) -> DevConfig:
    """Read and parse a configuration file.

    Raises:
        ConfigError: If the file cannot be read, is not YAML, or does not
            describe a valid configuration
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"Configuration file does not exist at {path}")

    try:
        raw = yaml.safe_load(path.read_text())
    except OSError as e:
        raise ConfigError(f"Error reading configuration file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing configuration file {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")

    try:
        return DevConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration file {path}: {e}") from e
