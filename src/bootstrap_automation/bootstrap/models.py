"""Data model for bootstrap stack reconciliation.

This module defines the immutable value types exchanged between the
existing-state lookup, the parameter reconciler, the invariant validator
and the stack deployer.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Mapping, Optional


# Version of the bootstrap template bundled with this release
CURRENT_TEMPLATE_VERSION = 4

DEFAULT_QUALIFIER = "hnb659fds"
DEFAULT_TOOLKIT_STACK_NAME = "CDKToolkit"

# CloudFormation parameter names declared by the bootstrap template
FILE_ASSETS_BUCKET_NAME = "FileAssetsBucketName"
FILE_ASSETS_BUCKET_KMS_KEY_ID = "FileAssetsBucketKmsKeyId"
PUBLIC_ACCESS_BLOCK_CONFIGURATION = "PublicAccessBlockConfiguration"
TRUSTED_ACCOUNTS = "TrustedAccounts"
CLOUDFORMATION_EXECUTION_POLICIES = "CloudFormationExecutionPolicies"
QUALIFIER = "Qualifier"

# Final parameter map handed to the deployer
ReconciledParameters = Dict[str, str]


@dataclass(frozen=True)
class Environment:
    """Deployment target for a bootstrap stack."""

    account: str
    region: str
    name: str

    @classmethod
    def from_account_region(cls, account: str, region: str) -> "Environment":
        """Build an environment named after its account and region."""
        return cls(account=account, region=region, name=f"aws://{account}/{region}")


@dataclass(frozen=True)
class ExistingStackState:
    """Previously deployed bootstrap stack as reported by the lookup.

    Absence of a deployed stack is represented by ``None``, never by an
    instance with empty fields.
    """

    version: int
    parameters: Mapping[str, str] = field(default_factory=dict)
    termination_protection: bool = False


@dataclass(frozen=True)
class DesiredConfiguration:
    """Bootstrap configuration requested for one invocation.

    ``termination_protection`` of ``None`` means "keep what is deployed".
    """

    bucket_name: Optional[str] = None
    kms_key_id: Optional[str] = None
    public_access_block_configuration: bool = True
    trusted_accounts: FrozenSet[str] = frozenset()
    cloudformation_execution_policies: FrozenSet[str] = frozenset()
    termination_protection: Optional[bool] = None
    qualifier: str = DEFAULT_QUALIFIER
    tags: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        trusted_accounts: Optional[Iterable[str]] = None,
        cloudformation_execution_policies: Optional[Iterable[str]] = None,
        **kwargs,
    ) -> "DesiredConfiguration":
        """Build a configuration from arbitrary iterables of accounts and policies."""
        return cls(
            trusted_accounts=frozenset(trusted_accounts or ()),
            cloudformation_execution_policies=frozenset(
                cloudformation_execution_policies or ()
            ),
            **kwargs,
        )
