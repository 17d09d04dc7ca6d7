"""End-to-end integration tests for bootstrap automation."""

import asyncio
import json
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, Mock

import pytest
import yaml
from botocore.exceptions import ClientError

from bootstrap_automation.bootstrap.bootstrapper import Bootstrapper
from bootstrap_automation.bootstrap.models import Environment
from bootstrap_automation.bootstrap.validator import UntrustedPolicyGap
from bootstrap_automation.core.aws_client import AWSClientManager
from bootstrap_automation.core.config import Configuration


class FakeCloudFormation:
    """In-memory stand-in for the CloudFormation API of one stack."""

    def __init__(self, stack=None):
        self.stack = stack
        self.create_stack = MagicMock(side_effect=self._create)
        self.update_stack = MagicMock(side_effect=self._update)
        self.update_termination_protection = MagicMock(side_effect=self._protect)
        self.get_waiter = MagicMock()

    def describe_stacks(self, StackName):
        if self.stack is None:
            raise ClientError(
                {"Error": {"Code": "ValidationError", "Message": f"Stack with id {StackName} does not exist"}},
                "DescribeStacks",
            )
        return {"Stacks": [self.stack]}

    def _apply(self, StackName, TemplateBody, Parameters, previous):
        template = json.loads(TemplateBody)
        values = {}
        for parameter in Parameters:
            if parameter.get("UsePreviousValue"):
                values[parameter["ParameterKey"]] = previous[parameter["ParameterKey"]]
            else:
                values[parameter["ParameterKey"]] = parameter["ParameterValue"]
        version = template["Resources"]["CdkBootstrapVersion"]["Properties"]["Value"]
        return {
            "StackId": f"arn:aws:cloudformation:us-east-1:123456789012:stack/{StackName}/1",
            "StackName": StackName,
            "StackStatus": "UPDATE_COMPLETE",
            "Parameters": [
                {"ParameterKey": k, "ParameterValue": v} for k, v in values.items()
            ],
            "Outputs": [{"OutputKey": "BootstrapVersion", "OutputValue": version}],
            "Exports": [
                o["Export"]["Name"] for o in template["Outputs"].values() if "Export" in o
            ],
        }

    def _create(self, StackName, TemplateBody, Parameters, Capabilities,
                EnableTerminationProtection, Tags):
        self.stack = self._apply(StackName, TemplateBody, Parameters, {})
        self.stack["EnableTerminationProtection"] = EnableTerminationProtection
        return {"StackId": self.stack["StackId"]}

    def _update(self, StackName, TemplateBody, Parameters, Capabilities, Tags=None):
        previous = {p["ParameterKey"]: p["ParameterValue"] for p in self.stack["Parameters"]}
        protection = self.stack.get("EnableTerminationProtection", False)
        self.stack = self._apply(StackName, TemplateBody, Parameters, previous)
        self.stack["EnableTerminationProtection"] = protection
        return {"StackId": self.stack["StackId"]}

    def _protect(self, StackName, EnableTerminationProtection):
        self.stack["EnableTerminationProtection"] = EnableTerminationProtection

    @property
    def parameters(self):
        return {p["ParameterKey"]: p["ParameterValue"] for p in self.stack["Parameters"]}


def load_config(config_data):
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config_data, f)
        config_path = f.name

    try:
        return Configuration(config_path)
    finally:
        Path(config_path).unlink()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for variable in ("AWS_REGION", "AWS_PROFILE", "CDK_DEFAULT_ACCOUNT"):
        monkeypatch.delenv(variable, raising=False)


@pytest.fixture
def env():
    return Environment.from_account_region("123456789012", "us-east-1")


def make_bootstrapper(cloudformation):
    aws_client = Mock(spec=AWSClientManager)
    aws_client.get_client.return_value = cloudformation
    return Bootstrapper.for_cloudformation(aws_client)


class TestEndToEnd:
    """Bootstrap from configuration through CloudFormation."""

    def test_fresh_environment_then_add_trust(self, env):
        cloudformation = FakeCloudFormation()
        bootstrapper = make_bootstrapper(cloudformation)

        first = load_config(
            {
                "bootstrap": {
                    "bucket_name": "assets",
                    "cloudformation_execution_policies": [
                        "arn:aws:iam::aws:policy/AdministratorAccess"
                    ],
                    "termination_protection": True,
                }
            }
        )
        result = asyncio.run(
            bootstrapper.bootstrap_environment(env, first.get_desired_configuration())
        )

        assert result.operation == "CREATE"
        assert result.outputs["BootstrapVersion"] == "4"
        assert cloudformation.stack["EnableTerminationProtection"] is True
        assert cloudformation.stack["Exports"] == [
            {"Fn::Sub": "CdkBootstrap-${Qualifier}-FileAssetKeyArn"}
        ]

        # Second run only adds trust; policies, bucket and protection are kept
        second = load_config({"bootstrap": {"trusted_accounts": ["111111111111"]}})
        result = asyncio.run(
            bootstrapper.bootstrap_environment(env, second.get_desired_configuration())
        )

        assert result.operation == "UPDATE"
        assert cloudformation.parameters["TrustedAccounts"] == "111111111111"
        assert (
            cloudformation.parameters["CloudFormationExecutionPolicies"]
            == "arn:aws:iam::aws:policy/AdministratorAccess"
        )
        assert cloudformation.parameters["FileAssetsBucketName"] == "assets"
        assert cloudformation.stack["EnableTerminationProtection"] is True
        cloudformation.update_termination_protection.assert_not_called()

    def test_trust_rejected_before_any_change(self, env):
        cloudformation = FakeCloudFormation()
        bootstrapper = make_bootstrapper(cloudformation)
        config = load_config({"bootstrap": {"trusted_accounts": ["111111111111"]}})

        with pytest.raises(UntrustedPolicyGap):
            asyncio.run(
                bootstrapper.bootstrap_environment(env, config.get_desired_configuration())
            )

        cloudformation.create_stack.assert_not_called()
        assert cloudformation.stack is None

    def test_switch_off_termination_protection(self, env):
        cloudformation = FakeCloudFormation()
        bootstrapper = make_bootstrapper(cloudformation)
        protected = load_config({"bootstrap": {"termination_protection": True}})
        asyncio.run(
            bootstrapper.bootstrap_environment(env, protected.get_desired_configuration())
        )

        unprotected = load_config({"bootstrap": {"termination_protection": False}})
        asyncio.run(
            bootstrapper.bootstrap_environment(env, unprotected.get_desired_configuration())
        )

        assert cloudformation.stack["EnableTerminationProtection"] is False
