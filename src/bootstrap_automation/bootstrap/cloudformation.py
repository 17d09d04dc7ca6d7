"""CloudFormation collaborators for bootstrap deployments.

This module provides the abstract stack lookup and stack deployer used by
the bootstrapper, and their boto3-backed implementations. boto3 calls are
blocking, so they run in the default executor of the running event loop.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from botocore.exceptions import ClientError, WaiterError

from bootstrap_automation.bootstrap.models import (
    DEFAULT_TOOLKIT_STACK_NAME,
    Environment,
    ExistingStackState,
    ReconciledParameters,
)
from bootstrap_automation.bootstrap.template import template_body
from bootstrap_automation.bootstrap.validator import BootstrapError
from bootstrap_automation.core.aws_client import AWSClientManager


logger = logging.getLogger(__name__)


class StackLookupError(BootstrapError):
    """Raised when the deployed bootstrap stack cannot be described."""
    pass


class DeployError(BootstrapError):
    """Raised when CloudFormation fails to deploy the bootstrap stack."""
    pass


@dataclass
class DeployResult:
    """Result of a bootstrap stack deployment."""

    stack_name: str
    operation: str  # CREATE or UPDATE
    stack_id: Optional[str] = None
    no_op: bool = False
    outputs: Dict[str, str] = field(default_factory=dict)


class StackLookup(ABC):
    """Reports the bootstrap stack currently deployed in an environment."""

    @abstractmethod
    async def lookup(self, environment: Environment) -> Optional[ExistingStackState]:
        """Get the deployed stack state.

        Returns:
            ExistingStackState, or None when no stack is deployed
        """
        pass


class StackDeployer(ABC):
    """Creates or updates the bootstrap stack in an environment."""

    @abstractmethod
    async def deploy(
        self,
        environment: Environment,
        template: Dict[str, Any],
        parameters: ReconciledParameters,
        termination_protection: bool,
        tags: Optional[Mapping[str, str]] = None,
    ) -> DeployResult:
        """Deploy the template with the given parameters.

        Raises:
            DeployError: When the deployment fails
        """
        pass


# Stacks in these states hold no deployed resources
ABSENT_STACK_STATUSES = ("REVIEW_IN_PROGRESS", "DELETE_COMPLETE")

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]


def _describe_stack(client, stack_name: str) -> Optional[Dict[str, Any]]:
    """Describe a stack, returning None when it does not exist."""
    try:
        response = client.describe_stacks(StackName=stack_name)
    except ClientError as e:
        error = e.response.get("Error", {})
        if error.get("Code") == "ValidationError" and "does not exist" in error.get("Message", ""):
            return None
        raise

    stacks = response.get("Stacks", [])
    if not stacks or stacks[0].get("StackStatus") in ABSENT_STACK_STATUSES:
        return None
    return stacks[0]


def _stack_outputs(stack: Dict[str, Any]) -> Dict[str, str]:
    return {o["OutputKey"]: o.get("OutputValue", "") for o in stack.get("Outputs", [])}


def _stack_parameters(stack: Dict[str, Any]) -> Dict[str, str]:
    return {
        p["ParameterKey"]: p.get("ParameterValue", "")
        for p in stack.get("Parameters", [])
    }


class CloudFormationStackLookup(StackLookup):
    """Looks up the bootstrap stack with DescribeStacks."""

    def __init__(
        self,
        aws_client: AWSClientManager,
        toolkit_stack_name: str = DEFAULT_TOOLKIT_STACK_NAME,
    ) -> None:
        self.aws_client = aws_client
        self.toolkit_stack_name = toolkit_stack_name

    async def lookup(self, environment: Environment) -> Optional[ExistingStackState]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._lookup, environment)

    def _lookup(self, environment: Environment) -> Optional[ExistingStackState]:
        """Describe the toolkit stack and decode its bootstrap state.

        Raises:
            StackLookupError: When DescribeStacks fails for any other reason
                              than a missing stack
        """
        client = self.aws_client.get_client("cloudformation", environment.region)
        try:
            stack = _describe_stack(client, self.toolkit_stack_name)
        except ClientError as e:
            raise StackLookupError(
                f"Failed to describe stack {self.toolkit_stack_name} in {environment.name}: {e}"
            ) from e

        if stack is None:
            logger.info(f"No bootstrap stack {self.toolkit_stack_name} in {environment.name}")
            return None

        outputs = _stack_outputs(stack)
        try:
            version = int(outputs.get("BootstrapVersion") or 0)
        except ValueError:
            logger.warning(
                f"Unreadable BootstrapVersion output '{outputs['BootstrapVersion']}', assuming 0"
            )
            version = 0

        state = ExistingStackState(
            version=version,
            parameters=_stack_parameters(stack),
            termination_protection=bool(stack.get("EnableTerminationProtection", False)),
        )
        logger.info(
            f"Found bootstrap stack {self.toolkit_stack_name} version {state.version} "
            f"in {environment.name}"
        )
        return state


class CloudFormationStackDeployer(StackDeployer):
    """Creates or updates the bootstrap stack and waits for completion."""

    # Waiter polling, 30 seconds x 120 attempts = 60 minutes
    WAITER_DELAY_SECONDS = 30
    WAITER_MAX_ATTEMPTS = 120

    def __init__(
        self,
        aws_client: AWSClientManager,
        toolkit_stack_name: str = DEFAULT_TOOLKIT_STACK_NAME,
        use_previous_parameters: bool = True,
    ) -> None:
        """Initialize the CloudFormation deployer.

        Args:
            aws_client: AWS client manager instance
            toolkit_stack_name: Name of the bootstrap stack
            use_previous_parameters: Keep deployed values of parameters
                                     that are not being set
        """
        self.aws_client = aws_client
        self.toolkit_stack_name = toolkit_stack_name
        self.use_previous_parameters = use_previous_parameters

    async def deploy(
        self,
        environment: Environment,
        template: Dict[str, Any],
        parameters: ReconciledParameters,
        termination_protection: bool,
        tags: Optional[Mapping[str, str]] = None,
    ) -> DeployResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self._deploy(environment, template, parameters, termination_protection, tags),
        )

    def build_parameters(
        self,
        parameters: ReconciledParameters,
        stack: Optional[Dict[str, Any]],
        template: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Convert reconciled parameters to the CloudFormation API shape.

        Parameters on the deployed stack that are not being set are sent
        with UsePreviousValue when previous values are kept, provided the
        new template still declares them.
        """
        cfn_parameters = [
            {"ParameterKey": name, "ParameterValue": value}
            for name, value in sorted(parameters.items())
        ]

        if stack is not None and self.use_previous_parameters:
            declared = (template or {}).get("Parameters") or {}
            for name in sorted(_stack_parameters(stack)):
                if name in parameters:
                    continue
                if template is not None and name not in declared:
                    logger.debug(f"Dropping parameter {name}, not declared by the new template")
                    continue
                cfn_parameters.append({"ParameterKey": name, "UsePreviousValue": True})

        return cfn_parameters

    def _deploy(
        self,
        environment: Environment,
        template: Dict[str, Any],
        parameters: ReconciledParameters,
        termination_protection: bool,
        tags: Optional[Mapping[str, str]],
    ) -> DeployResult:
        """Run the blocking create or update.

        Raises:
            DeployError: When an API call or the completion wait fails
        """
        stack_name = self.toolkit_stack_name
        client = self.aws_client.get_client("cloudformation", environment.region)
        cfn_tags = [{"Key": k, "Value": v} for k, v in sorted((tags or {}).items())]

        try:
            stack = _describe_stack(client, stack_name)
            cfn_parameters = self.build_parameters(parameters, stack, template)

            if stack is None:
                logger.info(f"Creating bootstrap stack {stack_name} in {environment.name}")
                response = client.create_stack(
                    StackName=stack_name,
                    TemplateBody=template_body(template),
                    Parameters=cfn_parameters,
                    Capabilities=CAPABILITIES,
                    EnableTerminationProtection=termination_protection,
                    Tags=cfn_tags,
                )
                result = DeployResult(stack_name, "CREATE", stack_id=response["StackId"])
                self._wait(client, "stack_create_complete")
            else:
                result = self._update(client, stack, template, cfn_parameters, cfn_tags, environment)
                if bool(stack.get("EnableTerminationProtection", False)) != termination_protection:
                    logger.info(
                        f"Setting termination protection of {stack_name} to {termination_protection}"
                    )
                    client.update_termination_protection(
                        StackName=stack_name,
                        EnableTerminationProtection=termination_protection,
                    )

            final_stack = _describe_stack(client, stack_name)
        except ClientError as e:
            error_message = e.response.get("Error", {}).get("Message", str(e))
            raise DeployError(
                f"Bootstrap deployment of {stack_name} in {environment.name} failed: {error_message}"
            ) from e
        except WaiterError as e:
            raise DeployError(
                f"Bootstrap stack {stack_name} in {environment.name} did not complete: {e}"
            ) from e

        if final_stack is not None:
            result.stack_id = final_stack.get("StackId", result.stack_id)
            result.outputs = _stack_outputs(final_stack)

        logger.info(f"Bootstrap stack {stack_name} {result.operation.lower()} finished")
        return result

    def _update(
        self,
        client,
        stack: Dict[str, Any],
        template: Dict[str, Any],
        cfn_parameters: List[Dict[str, Any]],
        cfn_tags: List[Dict[str, str]],
        environment: Environment,
    ) -> DeployResult:
        stack_name = self.toolkit_stack_name
        logger.info(f"Updating bootstrap stack {stack_name} in {environment.name}")
        kwargs = {
            "StackName": stack_name,
            "TemplateBody": template_body(template),
            "Parameters": cfn_parameters,
            "Capabilities": CAPABILITIES,
        }
        if cfn_tags:
            kwargs["Tags"] = cfn_tags

        try:
            client.update_stack(**kwargs)
        except ClientError as e:
            if "No updates are to be performed" in str(e):
                logger.info(f"No updates needed for bootstrap stack {stack_name}")
                return DeployResult(stack_name, "UPDATE", stack_id=stack.get("StackId"), no_op=True)
            raise

        self._wait(client, "stack_update_complete")
        return DeployResult(stack_name, "UPDATE", stack_id=stack.get("StackId"))

    def _wait(self, client, waiter_name: str) -> None:
        logger.debug(f"Waiting on {waiter_name} for {self.toolkit_stack_name}")
        client.get_waiter(waiter_name).wait(
            StackName=self.toolkit_stack_name,
            WaiterConfig={
                "Delay": self.WAITER_DELAY_SECONDS,
                "MaxAttempts": self.WAITER_MAX_ATTEMPTS,
            },
        )
