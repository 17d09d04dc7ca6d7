"""Centralized AWS client management for bootstrap deployments.

This module owns the boto3 session used by the stack lookup and the stack
deployer, caches one client per service and region, and resolves the
account and region that make up a bootstrap environment.
"""

import logging
from typing import Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    NoCredentialsError,
    ProfileNotFound,
)

from bootstrap_automation.bootstrap.models import Environment
from bootstrap_automation.core.config import ConfigurationError


logger = logging.getLogger(__name__)

# Adaptive retries for throttled CloudFormation and STS calls
DEFAULT_CLIENT_CONFIG = Config(retries={"max_attempts": 10, "mode": "adaptive"})


class AWSClientManager:
    """Session and client cache shared by the bootstrap collaborators."""

    def __init__(
        self,
        profile_name: Optional[str] = None,
        region_name: Optional[str] = None,
        validate_credentials: bool = True,
    ) -> None:
        """Initialize AWS client manager.

        Args:
            profile_name: Optional AWS profile name for credentials
            region_name: Optional default region, overrides the profile's region
            validate_credentials: Check credentials with STS on creation

        Raises:
            NoCredentialsError: When AWS credentials are not available
            ProfileNotFound: When specified profile doesn't exist
        """
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, boto3.client] = {}
        self._profile_name = profile_name
        self._region_name = region_name
        self._account_id: Optional[str] = None
        if validate_credentials:
            self._validate_credentials()

    def _validate_credentials(self) -> None:
        """Validate AWS credentials by resolving the caller identity.

        Raises:
            NoCredentialsError: When AWS credentials are not available
            ProfileNotFound: When specified profile doesn't exist
        """
        try:
            self.get_account_id()
        except ProfileNotFound:
            raise ProfileNotFound(profile=self._profile_name)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("InvalidClientTokenId", "ExpiredToken"):
                logger.error(
                    "AWS credentials are invalid or expired. "
                    "Please update your credentials."
                )
                raise NoCredentialsError() from e
            raise

    def _get_session(self) -> boto3.Session:
        """Get or create boto3 session."""
        if self._session is None:
            kwargs = {}
            if self._profile_name:
                kwargs["profile_name"] = self._profile_name
            if self._region_name:
                kwargs["region_name"] = self._region_name
            self._session = boto3.Session(**kwargs)
        return self._session

    def get_client(self, service_name: str, region_name: Optional[str] = None) -> boto3.client:
        """Get AWS service client for specified region.

        Args:
            service_name: AWS service name (e.g., 'cloudformation', 'sts')
            region_name: AWS region name, defaults to the session region

        Returns:
            Configured boto3 client for the service and region
        """
        region_name = region_name or self.get_current_region()
        client_key = f"{service_name}_{region_name}"

        if client_key not in self._clients:
            logger.debug(f"Creating {service_name} client for {region_name}")
            self._clients[client_key] = self._get_session().client(
                service_name, region_name=region_name, config=DEFAULT_CLIENT_CONFIG
            )

        return self._clients[client_key]

    def get_current_region(self) -> str:
        """Get current AWS region from session, defaulting to us-east-1."""
        return self._get_session().region_name or "us-east-1"

    def get_account_id(self) -> str:
        """Get the account ID of the current credentials.

        Raises:
            ClientError: When unable to get account information
        """
        if self._account_id is None:
            response = self.get_client("sts").get_caller_identity()
            self._account_id = response["Account"]
        return self._account_id

    def resolve_environment(
        self, account: Optional[str] = None, region: Optional[str] = None
    ) -> Environment:
        """Resolve the bootstrap target, filling gaps from the session.

        Args:
            account: Explicit account ID, defaults to the caller's account
            region: Explicit region, defaults to the session region

        Returns:
            Environment for the resolved account and region

        Raises:
            ConfigurationError: When the explicit account is not the account
                                the credentials belong to
        """
        caller_account = self.get_account_id()
        if account and account != caller_account:
            raise ConfigurationError(
                f"Target account {account} does not match the account of the "
                f"current credentials ({caller_account}). Use a profile for {account}."
            )

        return Environment.from_account_region(
            caller_account,
            region or self.get_current_region(),
        )

    def clear_cache(self) -> None:
        """Clear cached clients to force recreation."""
        self._clients.clear()
