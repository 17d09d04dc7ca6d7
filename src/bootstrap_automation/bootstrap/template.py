"""Bootstrap template loading and output export contract.

The bootstrap template is bundled with the package as YAML written with
long-form intrinsic functions so it can be read with ``yaml.safe_load``.
Consumers import the stack's exports by name, so the export list is fixed
data checked against the rendered template.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from bootstrap_automation.bootstrap.models import CURRENT_TEMPLATE_VERSION
from bootstrap_automation.bootstrap.validator import BootstrapError


logger = logging.getLogger(__name__)


TEMPLATE_PATH = Path(__file__).parent / "bootstrap-template.yaml"

# Used by older asset consumers that import the key ARN by name
FILE_ASSET_KEY_ARN_EXPORT = "CdkBootstrap-${Qualifier}-FileAssetKeyArn"

# Export names per template version
EXPECTED_EXPORTS: Dict[int, List[str]] = {
    1: [FILE_ASSET_KEY_ARN_EXPORT],
    2: [FILE_ASSET_KEY_ARN_EXPORT],
    3: [FILE_ASSET_KEY_ARN_EXPORT],
    4: [FILE_ASSET_KEY_ARN_EXPORT],
}


class TemplateContractError(BootstrapError):
    """Raised when the bootstrap template breaks its export contract."""
    pass


def load_bootstrap_template(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the bootstrap template.

    Args:
        path: Optional template path, defaults to the bundled template

    Returns:
        Freshly parsed template dictionary

    Raises:
        TemplateContractError: When the template cannot be read or parsed
    """
    template_path = path or TEMPLATE_PATH
    try:
        with open(template_path, "r", encoding="utf-8") as f:
            template = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise TemplateContractError(
            f"Invalid YAML in bootstrap template {template_path}: {e}"
        )
    except IOError as e:
        raise TemplateContractError(
            f"Unable to read bootstrap template {template_path}: {e}"
        )

    if not isinstance(template, dict):
        raise TemplateContractError(
            f"Bootstrap template {template_path} is not a mapping"
        )
    return template


def template_version(template: Dict[str, Any]) -> int:
    """Get the bootstrap version recorded by the template.

    Raises:
        TemplateContractError: When the version resource is missing
    """
    try:
        value = template["Resources"]["CdkBootstrapVersion"]["Properties"]["Value"]
        return int(value)
    except (KeyError, TypeError, ValueError) as e:
        raise TemplateContractError(f"Bootstrap template has no usable version: {e}")


def template_body(template: Dict[str, Any]) -> str:
    """Serialize a template for the CloudFormation TemplateBody argument."""
    return json.dumps(template, indent=1)


def get_export_names(template: Dict[str, Any]) -> List[Any]:
    """Get raw export names of all exported outputs, in declaration order."""
    outputs = template.get("Outputs") or {}
    return [
        output["Export"]["Name"]
        for output in outputs.values()
        if isinstance(output, dict) and output.get("Export") is not None
    ]


def render_export_name(export_name: Any, qualifier: str) -> str:
    """Resolve an export name for a concrete qualifier.

    Args:
        export_name: Plain string or ``{"Fn::Sub": pattern}`` mapping
        qualifier: Bootstrap qualifier of the environment

    Returns:
        Export name as it appears in the target environment
    """
    if isinstance(export_name, dict):
        if list(export_name) != ["Fn::Sub"] or not isinstance(export_name["Fn::Sub"], str):
            raise TemplateContractError(f"Unsupported export name: {export_name}")
        export_name = export_name["Fn::Sub"]
    return export_name.replace("${Qualifier}", qualifier)


def expected_export_names(qualifier: str, version: int = CURRENT_TEMPLATE_VERSION) -> List[str]:
    """Get the export names consumers may rely on for a template version."""
    if version not in EXPECTED_EXPORTS:
        raise TemplateContractError(f"No export contract for template version {version}")
    return [render_export_name(name, qualifier) for name in EXPECTED_EXPORTS[version]]


def validate_export_contract(
    template: Dict[str, Any], qualifier: str, version: Optional[int] = None
) -> List[str]:
    """Check that the template exports exactly the contracted names.

    Args:
        template: Parsed bootstrap template
        qualifier: Bootstrap qualifier used to render export names
        version: Contract version, defaults to the template's own version

    Returns:
        Rendered export names

    Raises:
        TemplateContractError: When exports were added, removed or renamed
    """
    if version is None:
        version = template_version(template)

    actual = [render_export_name(name, qualifier) for name in get_export_names(template)]
    expected = expected_export_names(qualifier, version)

    if actual != expected:
        raise TemplateContractError(
            f"Bootstrap template version {version} exports {actual}, expected {expected}"
        )

    logger.debug(f"Export contract satisfied for version {version}: {actual}")
    return actual
