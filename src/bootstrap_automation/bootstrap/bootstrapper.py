"""Bootstrap orchestration for a single environment.

This module provides the Bootstrapper class, which looks up the deployed
bootstrap stack, reconciles and validates the requested configuration,
and only then hands the result to the stack deployer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from bootstrap_automation.bootstrap.cloudformation import (
    CloudFormationStackDeployer,
    CloudFormationStackLookup,
    DeployResult,
    StackDeployer,
    StackLookup,
)
from bootstrap_automation.bootstrap.models import (
    CURRENT_TEMPLATE_VERSION,
    DEFAULT_TOOLKIT_STACK_NAME,
    DesiredConfiguration,
    Environment,
    ExistingStackState,
    ReconciledParameters,
)
from bootstrap_automation.bootstrap.reconciler import (
    effective_execution_policies,
    reconcile,
)
from bootstrap_automation.bootstrap.template import load_bootstrap_template
from bootstrap_automation.bootstrap.template import template_version as read_template_version
from bootstrap_automation.bootstrap.validator import (
    ValidationResult,
    resolve_termination_protection,
    validate,
)
from bootstrap_automation.core.aws_client import AWSClientManager


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BootstrapPlan:
    """Everything decided about a deployment before it is attempted."""

    existing: Optional[ExistingStackState]
    parameters: ReconciledParameters
    termination_protection: bool
    validation: ValidationResult


class Bootstrapper:
    """Creates or safely upgrades the bootstrap stack of an environment.

    The lookup and deployer are injected so that reconciliation can run
    against test doubles as well as against CloudFormation.
    """

    def __init__(
        self,
        lookup: StackLookup,
        deployer: StackDeployer,
        template: Optional[Dict[str, Any]] = None,
        template_version: Optional[int] = None,
    ) -> None:
        """Initialize the bootstrapper.

        Args:
            lookup: Reports the currently deployed bootstrap stack
            deployer: Performs the create or update
            template: Optional template, defaults to the bundled one
            template_version: Version of the template being deployed, read
                              from the template when one is given

        Raises:
            TemplateContractError: When a given template records no version
        """
        if template_version is None:
            if template is not None:
                template_version = read_template_version(template)
            else:
                template_version = CURRENT_TEMPLATE_VERSION

        self.lookup = lookup
        self.deployer = deployer
        self.template = template
        self.template_version = template_version

    @classmethod
    def for_cloudformation(
        cls,
        aws_client: AWSClientManager,
        toolkit_stack_name: str = DEFAULT_TOOLKIT_STACK_NAME,
    ) -> "Bootstrapper":
        """Build a bootstrapper backed by CloudFormation."""
        return cls(
            CloudFormationStackLookup(aws_client, toolkit_stack_name),
            CloudFormationStackDeployer(aws_client, toolkit_stack_name),
        )

    def plan(
        self, existing: Optional[ExistingStackState], desired: DesiredConfiguration
    ) -> BootstrapPlan:
        """Reconcile and validate without deploying.

        Args:
            existing: Deployed stack state, or None when nothing is deployed
            desired: Requested configuration

        Returns:
            BootstrapPlan; deterministic for equal inputs
        """
        parameters = reconcile(existing, desired)
        policies = effective_execution_policies(existing, desired)
        validation = validate(existing, desired, policies, self.template_version)

        return BootstrapPlan(
            existing=existing,
            parameters=parameters,
            termination_protection=resolve_termination_protection(existing, desired),
            validation=validation,
        )

    async def bootstrap_environment(
        self,
        environment: Environment,
        desired: Optional[DesiredConfiguration] = None,
    ) -> DeployResult:
        """Bootstrap one environment.

        Args:
            environment: Deployment target
            desired: Requested configuration, defaults to all defaults

        Returns:
            DeployResult reported by the deployer

        Raises:
            DowngradeRejected: When the deployed stack is newer than this release
            UntrustedPolicyGap: When trust is requested without execution policies
            DeployError: When the deployer fails, unchanged
        """
        desired = desired or DesiredConfiguration()

        existing = await self.lookup.lookup(environment)
        plan = self.plan(existing, desired)
        plan.validation.raise_for_failure()

        logger.info(
            f"Deploying bootstrap template version {self.template_version} to "
            f"{environment.name} (termination protection: {plan.termination_protection})"
        )
        template = self.template if self.template is not None else load_bootstrap_template()

        return await self.deployer.deploy(
            environment,
            template,
            plan.parameters,
            plan.termination_protection,
            desired.tags,
        )
