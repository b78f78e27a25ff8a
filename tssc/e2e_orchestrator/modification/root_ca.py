"""Enable the commented ``CUSTOM_ROOT_CA`` lines shipped in template CI files."""

import re

from tssc.e2e_orchestrator.models.enums import CIType
from tssc.e2e_orchestrator.modification.content import ContentModifications

CUSTOM_ROOT_CA = "CUSTOM_ROOT_CA"

_JENKINS_CREDENTIAL = re.compile(
    r"/\*\s*CUSTOM_ROOT_CA\s*=\s*credentials\('CUSTOM_ROOT_CA'\)\s*\*/"
)
_ACTIONS_ENV_VAR = re.compile(
    r"#\s*CUSTOM_ROOT_CA:\s*\$\{\{\s*vars\.CUSTOM_ROOT_CA\s*\}\}"
)
# Gitops workflows omit the spaces around the comment delimiters.
_ACTIONS_SCRIPT_VAR = re.compile(
    r"/\*\s*CUSTOM_ROOT_CA:\s*`\$\{\{\s*vars\.CUSTOM_ROOT_CA\s*\}\}`,?\s*\*/"
)

_UNCOMMENTED: dict[CIType, list[tuple[re.Pattern[str], str]]] = {
    CIType.JENKINS: [
        (_JENKINS_CREDENTIAL, "CUSTOM_ROOT_CA = credentials('CUSTOM_ROOT_CA')"),
    ],
    CIType.GITHUB_ACTIONS: [
        (_ACTIONS_ENV_VAR, "CUSTOM_ROOT_CA: ${{ vars.CUSTOM_ROOT_CA }}"),
        (_ACTIONS_SCRIPT_VAR, "CUSTOM_ROOT_CA: `${{ vars.CUSTOM_ROOT_CA }}`,"),
    ],
}


def supports_custom_root_ca(ci_type: CIType) -> bool:
    """Whether template CI files of ``ci_type`` carry a commented root CA."""
    return ci_type in _UNCOMMENTED


def uncomment_custom_root_ca(
    ci_type: CIType, path: str, content: str
) -> ContentModifications:
    """Build the patches enabling the root CA lines found in ``content``.

    Lines already enabled, or absent, produce no patch.
    """
    modifications = ContentModifications()
    for pattern, enabled in _UNCOMMENTED.get(ci_type, []):
        match = pattern.search(content)
        if match is not None:
            modifications.add(path, match.group(0), enabled)
    return modifications
