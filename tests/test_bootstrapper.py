"""Tests for bootstrap orchestration against in-memory collaborators."""

import asyncio

import pytest

from bootstrap_automation.bootstrap.bootstrapper import Bootstrapper
from bootstrap_automation.bootstrap.cloudformation import (
    DeployError,
    DeployResult,
    StackDeployer,
    StackLookup,
)
from bootstrap_automation.bootstrap.models import (
    DesiredConfiguration,
    Environment,
    ExistingStackState,
)
from bootstrap_automation.bootstrap.template import TemplateContractError, get_export_names
from bootstrap_automation.bootstrap.validator import (
    DowngradeRejected,
    UntrustedPolicyGap,
)


class FakeLookup(StackLookup):
    """Lookup returning a fixed stack state."""

    def __init__(self, state=None):
        self.state = state
        self.calls = []

    async def lookup(self, environment):
        self.calls.append(environment)
        return self.state


class FakeDeployer(StackDeployer):
    """Deployer recording every call instead of deploying."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def deploy(self, environment, template, parameters, termination_protection, tags=None):
        self.calls.append(
            {
                "environment": environment,
                "template": template,
                "parameters": parameters,
                "termination_protection": termination_protection,
                "tags": tags,
            }
        )
        if self.error is not None:
            raise self.error
        return DeployResult(stack_name="CDKToolkit", operation="CREATE")

    @property
    def last_call(self):
        return self.calls[-1]


@pytest.fixture
def env():
    return Environment(account="123456789012", region="us-east-1", name="mock")


@pytest.fixture
def deployer():
    return FakeDeployer()


def bootstrap(bootstrapper, env, desired=None):
    return asyncio.run(bootstrapper.bootstrap_environment(env, desired))


class TestBootstrapper:
    """Test cases for Bootstrapper.bootstrap_environment."""

    def test_passes_the_bucket_name_as_a_cfn_parameter(self, env, deployer):
        bootstrapper = Bootstrapper(FakeLookup(), deployer)

        bootstrap(bootstrapper, env, DesiredConfiguration(bucket_name="my-bucket-name"))

        parameters = deployer.last_call["parameters"]
        assert parameters["FileAssetsBucketName"] == "my-bucket-name"
        assert parameters["PublicAccessBlockConfiguration"] == "true"

    def test_passes_the_kms_key_id_as_a_cfn_parameter(self, env, deployer):
        bootstrapper = Bootstrapper(FakeLookup(), deployer)

        bootstrap(bootstrapper, env, DesiredConfiguration(kms_key_id="my-kms-key-id"))

        parameters = deployer.last_call["parameters"]
        assert parameters["FileAssetsBucketKmsKeyId"] == "my-kms-key-id"
        assert parameters["PublicAccessBlockConfiguration"] == "true"

    def test_passes_false_to_public_access_block_configuration(self, env, deployer):
        bootstrapper = Bootstrapper(FakeLookup(), deployer)

        bootstrap(
            bootstrapper, env, DesiredConfiguration(public_access_block_configuration=False)
        )

        assert deployer.last_call["parameters"]["PublicAccessBlockConfiguration"] == "false"

    def test_trusted_accounts_without_policies_rejected(self, env, deployer):
        bootstrapper = Bootstrapper(FakeLookup(), deployer)
        desired = DesiredConfiguration.create(trusted_accounts=["123456789012"])

        with pytest.raises(UntrustedPolicyGap, match=r"--cloudformation-execution-policies.*--trust"):
            bootstrap(bootstrapper, env, desired)

        assert deployer.calls == []

    def test_trusted_account_allowed_with_policy_on_stack(self, env, deployer):
        existing = ExistingStackState(
            version=1,
            parameters={"CloudFormationExecutionPolicies": "arn:aws:something"},
        )
        bootstrapper = Bootstrapper(FakeLookup(existing), deployer)

        bootstrap(
            bootstrapper, env, DesiredConfiguration.create(trusted_accounts=["123456789012"])
        )

        parameters = deployer.last_call["parameters"]
        assert parameters["TrustedAccounts"] == "123456789012"
        assert parameters["CloudFormationExecutionPolicies"] == "arn:aws:something"

    def test_downgrade_rejected(self, env, deployer):
        bootstrapper = Bootstrapper(FakeLookup(ExistingStackState(version=999)), deployer)

        with pytest.raises(DowngradeRejected, match="Not downgrading existing bootstrap stack"):
            bootstrap(bootstrapper, env, DesiredConfiguration())

        assert deployer.calls == []

    def test_bootstrap_template_has_the_right_exports(self, env, deployer):
        bootstrapper = Bootstrapper(FakeLookup(), deployer)

        bootstrap(bootstrapper, env)

        assert get_export_names(deployer.last_call["template"]) == [
            {"Fn::Sub": "CdkBootstrap-${Qualifier}-FileAssetKeyArn"},
        ]

    def test_not_termination_protected_by_default(self, env, deployer):
        bootstrap(Bootstrapper(FakeLookup(), deployer), env)

        assert deployer.last_call["termination_protection"] is False

    def test_termination_protected_when_option_is_set(self, env, deployer):
        bootstrap(
            Bootstrapper(FakeLookup(), deployer),
            env,
            DesiredConfiguration(termination_protection=True),
        )

        assert deployer.last_call["termination_protection"] is True

    def test_termination_protection_left_alone_when_not_given(self, env, deployer):
        existing = ExistingStackState(version=1, termination_protection=True)

        bootstrap(Bootstrapper(FakeLookup(existing), deployer), env, DesiredConfiguration())

        assert deployer.last_call["termination_protection"] is True

    def test_termination_protection_can_be_switched_off(self, env, deployer):
        existing = ExistingStackState(version=1, termination_protection=True)

        bootstrap(
            Bootstrapper(FakeLookup(existing), deployer),
            env,
            DesiredConfiguration(termination_protection=False),
        )

        assert deployer.last_call["termination_protection"] is False

    def test_deploy_error_propagates_unchanged(self, env):
        error = DeployError("stack failed")
        bootstrapper = Bootstrapper(FakeLookup(), FakeDeployer(error=error))

        with pytest.raises(DeployError) as exc_info:
            bootstrap(bootstrapper, env)

        assert exc_info.value is error

    def test_lookup_receives_environment(self, env, deployer):
        lookup = FakeLookup()

        bootstrap(Bootstrapper(lookup, deployer), env)

        assert lookup.calls == [env]
        assert deployer.last_call["environment"] == env

    def test_tags_forwarded(self, env, deployer):
        desired = DesiredConfiguration(tags={"Team": "platform"})

        bootstrap(Bootstrapper(FakeLookup(), deployer), env, desired)

        assert deployer.last_call["tags"] == {"Team": "platform"}

    def test_custom_template_used(self, env, deployer):
        template = {
            "Resources": {"CdkBootstrapVersion": {"Properties": {"Value": "4"}}},
            "Outputs": {},
        }

        bootstrap(Bootstrapper(FakeLookup(), deployer, template=template), env)

        assert deployer.last_call["template"] is template

    def test_custom_template_version_read_from_template(self, env, deployer):
        template = {
            "Resources": {"CdkBootstrapVersion": {"Properties": {"Value": "2"}}},
            "Outputs": {},
        }
        bootstrapper = Bootstrapper(FakeLookup(ExistingStackState(version=3)), deployer, template=template)

        assert bootstrapper.template_version == 2
        with pytest.raises(DowngradeRejected, match="from version '3' to version '2'"):
            bootstrap(bootstrapper, env)
        assert deployer.calls == []

    def test_custom_template_without_version_rejected(self, deployer):
        with pytest.raises(TemplateContractError):
            Bootstrapper(FakeLookup(), deployer, template={"Outputs": {}})


class TestBootstrapPlan:
    """Test cases for Bootstrapper.plan."""

    def test_plan_is_idempotent(self, deployer):
        existing = ExistingStackState(
            version=2,
            parameters={"CloudFormationExecutionPolicies": "arn:aws:something"},
            termination_protection=True,
        )
        desired = DesiredConfiguration.create(
            trusted_accounts=["111111111111", "222222222222"], bucket_name="b"
        )
        bootstrapper = Bootstrapper(FakeLookup(existing), deployer)

        first = bootstrapper.plan(existing, desired)
        second = bootstrapper.plan(existing, desired)

        assert first.parameters == second.parameters
        assert first.termination_protection == second.termination_protection
        assert first.validation.status == second.validation.status

    def test_plan_reports_failure_without_raising(self, deployer):
        bootstrapper = Bootstrapper(FakeLookup(), deployer)
        desired = DesiredConfiguration.create(trusted_accounts=["111111111111"])

        plan = bootstrapper.plan(None, desired)

        assert not plan.validation.ok
        assert isinstance(plan.validation.error, UntrustedPolicyGap)
        assert plan.parameters["TrustedAccounts"] == "111111111111"
