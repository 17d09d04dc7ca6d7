"""AWS Bootstrap Automation - Main Entry Point.

Command line entry point that creates or upgrades the bootstrap stack of
one AWS environment.
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError, NoCredentialsError, ProfileNotFound

from bootstrap_automation import __version__
from bootstrap_automation.bootstrap.bootstrapper import Bootstrapper, BootstrapPlan
from bootstrap_automation.bootstrap.template import TEMPLATE_PATH
from bootstrap_automation.bootstrap.validator import BootstrapError
from bootstrap_automation.core.aws_client import AWSClientManager
from bootstrap_automation.core.config import Configuration, ConfigurationError


logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "1"):
        return True
    if lowered in ("false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got '{value}'")


def _split_values(values: Optional[List[str]]) -> Optional[List[str]]:
    """Flatten repeated and comma-separated flag values."""
    if not values:
        return None
    return [item.strip() for value in values for item in value.split(",") if item.strip()]


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="aws-bootstrap",
        description="Create or upgrade the deployment bootstrap stack of an AWS environment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                   # Auto-detect bootstrap.yaml, bootstrap current account/region
  %(prog)s bootstrap.yaml --validate-only    # Show the reconciled parameters without deploying
  %(prog)s --trust 111111111111 \\
      --cloudformation-execution-policies arn:aws:iam::aws:policy/AdministratorAccess
  %(prog)s --show-template                   # Print the bundled bootstrap template
        """,
    )

    parser.add_argument(
        "config_file",
        nargs="?",
        help="Path to configuration file (default: auto-detect bootstrap.yaml)",
    )
    parser.add_argument("--profile", help="AWS profile name to use for credentials")
    parser.add_argument("--region", help="AWS region to bootstrap")
    parser.add_argument("--account", help="AWS account ID to bootstrap")
    parser.add_argument(
        "--bootstrap-bucket-name", "--toolkit-bucket-name",
        dest="bucket_name",
        help="Name of the S3 bucket used for file assets",
    )
    parser.add_argument(
        "--bootstrap-kms-key-id",
        dest="kms_key_id",
        help="KMS key used to encrypt the asset bucket ('AWS_MANAGED_KEY' for the S3 managed key)",
    )
    parser.add_argument(
        "--public-access-block-configuration",
        type=_parse_bool,
        help="Block public access on the asset bucket (default: true)",
    )
    parser.add_argument(
        "--trust",
        action="append",
        dest="trusted_accounts",
        help="Account ID trusted to deploy into this environment (repeatable)",
    )
    parser.add_argument(
        "--cloudformation-execution-policies",
        action="append",
        dest="cloudformation_execution_policies",
        help="Managed policy ARN attached to the CloudFormation execution role (repeatable)",
    )
    parser.add_argument(
        "--termination-protection",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Toggle termination protection; left unchanged when omitted",
    )
    parser.add_argument("--qualifier", help="Qualifier distinguishing bootstrap stacks")
    parser.add_argument("--toolkit-stack-name", help="Name of the bootstrap stack")
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Reconcile and validate, do not deploy",
    )
    parser.add_argument(
        "--show-template",
        action="store_true",
        help="Print the bootstrap template and exit",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--version",
        action="version",
        version=f"AWS Bootstrap Automation v{__version__}",
    )

    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map command line flags to configuration key paths."""
    return {
        "aws.region": args.region,
        "aws.account": args.account,
        "aws.profile_name": args.profile,
        "bootstrap.bucket_name": args.bucket_name,
        "bootstrap.kms_key_id": args.kms_key_id,
        "bootstrap.public_access_block_configuration": args.public_access_block_configuration,
        "bootstrap.trusted_accounts": _split_values(args.trusted_accounts),
        "bootstrap.cloudformation_execution_policies": _split_values(
            args.cloudformation_execution_policies
        ),
        "bootstrap.termination_protection": args.termination_protection,
        "bootstrap.qualifier": args.qualifier,
        "bootstrap.toolkit_stack_name": args.toolkit_stack_name,
    }


def display_plan(plan: BootstrapPlan) -> None:
    """Display reconciled parameters and validation outcome."""
    if plan.existing is None:
        print("📦 No bootstrap stack deployed yet")
    else:
        print(f"📦 Deployed bootstrap version: {plan.existing.version}")

    print("Parameters:")
    for name, value in sorted(plan.parameters.items()):
        print(f"   • {name}: {value}")
    print(f"Termination protection: {plan.termination_protection}")

    symbol = "✅" if plan.validation.ok else "❌"
    print(f"{symbol} {plan.validation.message}")
    for step in plan.validation.remediation_steps or []:
        print(f"   • {step}")


async def run_bootstrap(
    bootstrapper: Bootstrapper,
    config: Configuration,
    aws_client: AWSClientManager,
    validate_only: bool,
) -> int:
    """Bootstrap the configured environment.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    environment = aws_client.resolve_environment(config.get_account(), config.get_region())
    desired = config.get_desired_configuration()
    print(f"🌍 Bootstrapping environment {environment.name}")

    if validate_only:
        existing = await bootstrapper.lookup.lookup(environment)
        plan = bootstrapper.plan(existing, desired)
        display_plan(plan)
        return 0 if plan.validation.ok else 1

    result = await bootstrapper.bootstrap_environment(environment, desired)
    if result.no_op:
        print(f"✅ Environment {environment.name} bootstrapped (no changes)")
    else:
        print(f"✅ Environment {environment.name} bootstrapped")
    for key, value in sorted(result.outputs.items()):
        print(f"   {key}: {value}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = parse_arguments(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.show_template:
        print(TEMPLATE_PATH.read_text(encoding="utf-8"))
        return 0

    try:
        config = Configuration(args.config_file)
        config.apply_overrides(build_overrides(args))
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    if config.config_path is not None:
        print(f"📄 Using configuration file: {config.config_path}")

    try:
        aws_client = AWSClientManager(
            profile_name=config.get_profile_name(),
            region_name=config.get_region(),
        )
    except (ClientError, NoCredentialsError, ProfileNotFound) as e:
        print(f"❌ AWS client initialization failed: {e}")
        return 1

    bootstrapper = Bootstrapper.for_cloudformation(
        aws_client, config.get_toolkit_stack_name()
    )

    try:
        return asyncio.run(
            run_bootstrap(bootstrapper, config, aws_client, args.validate_only)
        )
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return 1
    except BootstrapError as e:
        print(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\n👋 Operation cancelled by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
