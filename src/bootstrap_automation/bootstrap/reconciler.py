"""Parameter reconciliation for the bootstrap stack.

Merges the requested bootstrap configuration with the parameters of the
stack that is already deployed. Every rule is a pure function of its
inputs so each one can be exercised on its own.
"""

import logging
from typing import Callable, Dict, List, Optional

from bootstrap_automation.bootstrap.models import (
    CLOUDFORMATION_EXECUTION_POLICIES,
    FILE_ASSETS_BUCKET_KMS_KEY_ID,
    FILE_ASSETS_BUCKET_NAME,
    PUBLIC_ACCESS_BLOCK_CONFIGURATION,
    QUALIFIER,
    TRUSTED_ACCOUNTS,
    DesiredConfiguration,
    ExistingStackState,
    ReconciledParameters,
)


logger = logging.getLogger(__name__)


def split_cfn_list(value: Optional[str]) -> List[str]:
    """Split a CloudFormation comma-delimited list value.

    Args:
        value: Raw parameter value, possibly empty or None

    Returns:
        List of non-blank entries in their original order
    """
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def bucket_name_parameter(desired: DesiredConfiguration) -> Dict[str, str]:
    if desired.bucket_name is None:
        return {}
    return {FILE_ASSETS_BUCKET_NAME: desired.bucket_name}


def kms_key_parameter(desired: DesiredConfiguration) -> Dict[str, str]:
    if desired.kms_key_id is None:
        return {}
    return {FILE_ASSETS_BUCKET_KMS_KEY_ID: desired.kms_key_id}


def public_access_block_parameter(desired: DesiredConfiguration) -> Dict[str, str]:
    """Always emitted; CloudFormation expects lower-case boolean strings."""
    value = "true" if desired.public_access_block_configuration else "false"
    return {PUBLIC_ACCESS_BLOCK_CONFIGURATION: value}


def trusted_accounts_parameter(desired: DesiredConfiguration) -> Dict[str, str]:
    if not desired.trusted_accounts:
        return {}
    return {TRUSTED_ACCOUNTS: ",".join(sorted(desired.trusted_accounts))}


def execution_policies_parameter(
    existing: Optional[ExistingStackState], desired: DesiredConfiguration
) -> Dict[str, str]:
    """Requested policies replace the deployed ones; otherwise carry them forward."""
    if desired.cloudformation_execution_policies:
        return {
            CLOUDFORMATION_EXECUTION_POLICIES: ",".join(
                sorted(desired.cloudformation_execution_policies)
            )
        }

    if existing is not None and existing.parameters.get(CLOUDFORMATION_EXECUTION_POLICIES):
        return {
            CLOUDFORMATION_EXECUTION_POLICIES: existing.parameters[
                CLOUDFORMATION_EXECUTION_POLICIES
            ]
        }

    return {}


def qualifier_parameter(desired: DesiredConfiguration) -> Dict[str, str]:
    return {QUALIFIER: desired.qualifier}


def effective_execution_policies(
    existing: Optional[ExistingStackState], desired: DesiredConfiguration
) -> List[str]:
    """Get the execution policies the stack will carry after deployment.

    Args:
        existing: Deployed stack state, or None when nothing is deployed
        desired: Requested configuration

    Returns:
        Requested policies if any were given, else the deployed ones
    """
    if desired.cloudformation_execution_policies:
        return sorted(desired.cloudformation_execution_policies)
    if existing is None:
        return []
    return split_cfn_list(existing.parameters.get(CLOUDFORMATION_EXECUTION_POLICIES))


_DESIRED_RULES: List[Callable[[DesiredConfiguration], Dict[str, str]]] = [
    bucket_name_parameter,
    kms_key_parameter,
    public_access_block_parameter,
    trusted_accounts_parameter,
    qualifier_parameter,
]


def reconcile(
    existing: Optional[ExistingStackState], desired: DesiredConfiguration
) -> ReconciledParameters:
    """Derive the CloudFormation parameters for a bootstrap deployment.

    Args:
        existing: Deployed stack state, or None when nothing is deployed
        desired: Requested configuration

    Returns:
        Mapping of CloudFormation parameter name to string value

    Raises:
        ValueError: When two rules write the same parameter
    """
    fragments = [rule(desired) for rule in _DESIRED_RULES]
    fragments.append(execution_policies_parameter(existing, desired))

    parameters: ReconciledParameters = {}
    for fragment in fragments:
        for name, value in fragment.items():
            if name in parameters:
                raise ValueError(f"Parameter {name} produced by more than one rule")
            parameters[name] = value

    logger.debug(f"Reconciled bootstrap parameters: {parameters}")
    return parameters
