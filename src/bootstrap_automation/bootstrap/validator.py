"""Invariant validation for reconciled bootstrap configurations.

This module rejects bootstrap requests that would downgrade the deployed
stack or grant cross-account trust without execution policies. All checks
run before anything is sent to CloudFormation.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from bootstrap_automation.bootstrap.models import (
    CURRENT_TEMPLATE_VERSION,
    DesiredConfiguration,
    ExistingStackState,
)


logger = logging.getLogger(__name__)


class BootstrapError(Exception):
    """Base exception for bootstrap operations."""
    pass


class DowngradeRejected(BootstrapError):
    """Raised when the deployed bootstrap stack is newer than this release."""

    def __init__(self, existing_version: int, new_version: int) -> None:
        self.existing_version = existing_version
        self.new_version = new_version
        super().__init__(
            f"Not downgrading existing bootstrap stack from version "
            f"'{existing_version}' to version '{new_version}'"
        )


class UntrustedPolicyGap(BootstrapError):
    """Raised when trusted accounts are requested without execution policies."""

    def __init__(self) -> None:
        super().__init__(
            "Please pass '--cloudformation-execution-policies' when using '--trust' "
            "to specify deployment permissions. Try a managed policy of the form "
            "'arn:aws:iam::aws:policy/<PolicyName>'."
        )


class ValidationStatus(Enum):
    """Validation result status."""

    PASSED = "PASSED"
    FAILED = "FAILED"


@dataclass
class ValidationResult:
    """Outcome of validating a bootstrap request."""

    status: ValidationStatus
    message: str
    error: Optional[BootstrapError] = None
    remediation_steps: Optional[List[str]] = None

    @property
    def ok(self) -> bool:
        return self.status == ValidationStatus.PASSED

    def raise_for_failure(self) -> None:
        """Raise the carried error if validation failed.

        Raises:
            BootstrapError: The typed failure that stopped validation
        """
        if self.error is not None:
            raise self.error


def check_no_downgrade(
    existing: Optional[ExistingStackState],
    new_version: int = CURRENT_TEMPLATE_VERSION,
) -> Optional[ValidationResult]:
    """Reject deploying a template older than the one already live."""
    if existing is None or new_version >= existing.version:
        return None

    error = DowngradeRejected(existing.version, new_version)
    return ValidationResult(
        status=ValidationStatus.FAILED,
        message=str(error),
        error=error,
        remediation_steps=[
            f"Upgrade this tool to a release bundling template version {existing.version} or later",
        ],
    )


def check_trust_has_policies(
    desired: DesiredConfiguration, effective_policies: Sequence[str]
) -> Optional[ValidationResult]:
    """Reject cross-account trust without an execution policy guardrail."""
    if not desired.trusted_accounts or effective_policies:
        return None

    error = UntrustedPolicyGap()
    return ValidationResult(
        status=ValidationStatus.FAILED,
        message=str(error),
        error=error,
        remediation_steps=[
            "Add --cloudformation-execution-policies with at least one policy ARN",
            "Or remove --trust to bootstrap without cross-account access",
        ],
    )


def validate(
    existing: Optional[ExistingStackState],
    desired: DesiredConfiguration,
    effective_policies: Sequence[str],
    new_version: int = CURRENT_TEMPLATE_VERSION,
) -> ValidationResult:
    """Validate a bootstrap request; the first failing check wins.

    Args:
        existing: Deployed stack state, or None when nothing is deployed
        desired: Requested configuration
        effective_policies: Execution policies the stack will carry
        new_version: Template version about to be deployed

    Returns:
        ValidationResult, PASSED or carrying the first typed failure
    """
    failure = check_no_downgrade(existing, new_version)
    if failure is None:
        failure = check_trust_has_policies(desired, effective_policies)

    if failure is not None:
        logger.warning(f"Bootstrap validation failed: {failure.message}")
        return failure

    return ValidationResult(
        status=ValidationStatus.PASSED,
        message=f"Bootstrap template version {new_version} can be deployed",
    )


def resolve_termination_protection(
    existing: Optional[ExistingStackState], desired: DesiredConfiguration
) -> bool:
    """Get the termination protection flag to deploy with.

    An explicit request wins, then the deployed stack's flag, then False.
    """
    if desired.termination_protection is not None:
        return desired.termination_protection
    if existing is not None:
        return existing.termination_protection
    return False
