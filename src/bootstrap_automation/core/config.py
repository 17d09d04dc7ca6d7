"""Configuration management for bootstrap deployments.

This module handles YAML configuration loading, validation, and
environment variable override support, and turns the result into the
target environment and requested bootstrap configuration.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from bootstrap_automation.bootstrap.models import (
    DEFAULT_QUALIFIER,
    DEFAULT_TOOLKIT_STACK_NAME,
    DesiredConfiguration,
)


DEFAULT_CONFIG_PATHS = (Path("bootstrap.yaml"), Path("config/bootstrap.yaml"))

QUALIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,10}$")
ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")

BOOLEAN_FIELDS = ("public_access_block_configuration", "termination_protection")
STRING_FIELDS = ("bucket_name", "kms_key_id", "toolkit_stack_name")
LIST_FIELDS = ("trusted_accounts", "cloudformation_execution_policies")

# Environment variable -> configuration key
ENVIRONMENT_OVERRIDES = {
    "AWS_REGION": "aws.region",
    "AWS_PROFILE": "aws.profile_name",
    "CDK_DEFAULT_ACCOUNT": "aws.account",
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Configuration:
    """Configuration management with YAML loading and validation.

    Configuration is read from an explicit file, an auto-detected
    ``bootstrap.yaml``, or starts out empty when neither exists so that
    command line flags alone can drive a bootstrap.
    """

    def __init__(self, config_path: Optional[str] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_path: Optional path to configuration file.
                        If None, auto-detects bootstrap.yaml.

        Raises:
            ConfigurationError: When configuration file is invalid
        """
        self._config: Dict[str, Any] = {}
        self._config_path = self._resolve_config_path(config_path)
        if self._config_path is not None:
            self._load_configuration()
        self._apply_environment_overrides()
        self._validate_configuration()

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    def _resolve_config_path(self, config_path: Optional[str]) -> Optional[Path]:
        """Resolve configuration file path.

        Raises:
            ConfigurationError: When an explicit configuration file is missing
        """
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise ConfigurationError(
                    f"Configuration file not found: {path}. "
                    "Please create a configuration file or specify a valid path."
                )
            return path

        for path in DEFAULT_CONFIG_PATHS:
            if path.exists():
                return path
        return None

    def _load_configuration(self) -> None:
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: When YAML file is invalid
        """
        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file {self._config_path}: {e}"
            )
        except IOError as e:
            raise ConfigurationError(
                f"Unable to read configuration file {self._config_path}: {e}"
            )

        if not isinstance(self._config, dict):
            raise ConfigurationError(
                f"Configuration file {self._config_path} must contain a mapping"
            )

    def _apply_environment_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        for variable, key_path in ENVIRONMENT_OVERRIDES.items():
            if os.environ.get(variable):
                self._set_nested_value(key_path, os.environ[variable])

    def _validate_configuration(self) -> None:
        """Validate and normalize the aws and bootstrap sections.

        Raises:
            ConfigurationError: When a field has the wrong shape
        """
        aws_config = self._section("aws")
        for key in ("region", "account", "profile_name"):
            if key in aws_config and aws_config[key] is not None:
                aws_config[key] = str(aws_config[key])
                if not aws_config[key]:
                    raise ConfigurationError(f"Field 'aws.{key}' must be a non-empty string")

        account = aws_config.get("account")
        if account is not None and not ACCOUNT_ID_PATTERN.match(account):
            raise ConfigurationError(
                f"Field 'aws.account' must be a 12-digit account ID, got '{account}'"
            )

        bootstrap_config = self._section("bootstrap")

        for key in BOOLEAN_FIELDS:
            value = bootstrap_config.get(key)
            if value is not None and not isinstance(value, bool):
                raise ConfigurationError(f"Field 'bootstrap.{key}' must be true or false")

        for key in STRING_FIELDS:
            value = bootstrap_config.get(key)
            if value is not None and (not isinstance(value, str) or not value):
                raise ConfigurationError(f"Field 'bootstrap.{key}' must be a non-empty string")

        for key in LIST_FIELDS:
            bootstrap_config[key] = self._as_string_list(key, bootstrap_config.get(key))

        for account_id in bootstrap_config["trusted_accounts"]:
            if not ACCOUNT_ID_PATTERN.match(account_id):
                raise ConfigurationError(
                    f"Trusted account '{account_id}' is not a 12-digit account ID"
                )

        for policy in bootstrap_config["cloudformation_execution_policies"]:
            if not policy.startswith("arn:"):
                raise ConfigurationError(
                    f"Execution policy '{policy}' must be an IAM policy ARN"
                )

        qualifier = bootstrap_config.get("qualifier", DEFAULT_QUALIFIER)
        if not isinstance(qualifier, str) or not QUALIFIER_PATTERN.match(qualifier):
            raise ConfigurationError(
                f"Field 'bootstrap.qualifier' must be 1-10 characters of "
                f"[A-Za-z0-9_-], got '{qualifier}'"
            )

        tags = bootstrap_config.get("tags") or {}
        if not isinstance(tags, dict):
            raise ConfigurationError("Field 'bootstrap.tags' must be a mapping")
        bootstrap_config["tags"] = {str(k): str(v) for k, v in tags.items()}

    def _section(self, name: str) -> Dict[str, Any]:
        section = self._config.setdefault(name, {})
        if section is None:
            section = self._config[name] = {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
        return section

    def _as_string_list(self, key: str, value: Any) -> List[str]:
        """Accept a list or a comma-separated string; YAML may yield ints for IDs."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, list):
            raise ConfigurationError(f"Field 'bootstrap.{key}' must be a list")
        return [str(item).strip() for item in value if str(item).strip()]

    def _set_nested_value(self, key_path: str, value: Any) -> None:
        """Set nested configuration value using dot notation.

        Args:
            key_path: Dot-separated key path (e.g., 'aws.region')
            value: Value to set
        """
        keys = key_path.split(".")
        current = self._config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Apply command line overrides and re-validate.

        Args:
            overrides: Mapping of dot-separated key path to value; None
                       values are skipped

        Raises:
            ConfigurationError: When an override makes the configuration invalid
        """
        for key_path, value in overrides.items():
            if value is not None:
                self._set_nested_value(key_path, value)
        self._validate_configuration()

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key_path: Dot-separated key path (e.g., 'aws.region')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split(".")
        current = self._config

        try:
            for key in keys:
                current = current[key]
            return current
        except (KeyError, TypeError):
            return default

    def get_region(self) -> Optional[str]:
        return self.get("aws.region")

    def get_account(self) -> Optional[str]:
        return self.get("aws.account")

    def get_profile_name(self) -> Optional[str]:
        return self.get("aws.profile_name")

    def get_toolkit_stack_name(self) -> str:
        return self.get("bootstrap.toolkit_stack_name") or DEFAULT_TOOLKIT_STACK_NAME

    def get_desired_configuration(self) -> DesiredConfiguration:
        """Build the requested bootstrap configuration.

        Returns:
            DesiredConfiguration from the bootstrap section
        """
        bootstrap_config = self.get("bootstrap", {})
        public_access_block = bootstrap_config.get("public_access_block_configuration")

        return DesiredConfiguration.create(
            bucket_name=bootstrap_config.get("bucket_name"),
            kms_key_id=bootstrap_config.get("kms_key_id"),
            public_access_block_configuration=(
                True if public_access_block is None else public_access_block
            ),
            trusted_accounts=bootstrap_config.get("trusted_accounts"),
            cloudformation_execution_policies=bootstrap_config.get(
                "cloudformation_execution_policies"
            ),
            termination_protection=bootstrap_config.get("termination_protection"),
            qualifier=bootstrap_config.get("qualifier", DEFAULT_QUALIFIER),
            tags=dict(bootstrap_config.get("tags", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Get complete configuration as dictionary."""
        return self._config.copy()
