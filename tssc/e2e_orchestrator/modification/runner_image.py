"""Locate and swap the runner image declared in a CI file."""

import re

from tssc.e2e_orchestrator.errors import NotFoundError
from tssc.e2e_orchestrator.modification.content import ContentModifications

# ``image: <ref>`` in YAML CI files, ``image '<ref>'`` in a Jenkinsfile.
_RUNNER_IMAGE_PATTERN = re.compile(
    r"""^\s*(?:-\s*)?image:\s*['"]?(?P<yaml>[^\s'"#]+)|\bimage\s+'(?P<groovy>[^']+)'""",
    re.MULTILINE,
)


def find_runner_image(content: str) -> str:
    """Return the first runner image referenced in a CI file.

    Raises:
        NotFoundError: If the file declares no image

    """
    match = _RUNNER_IMAGE_PATTERN.search(content)
    if match is None:
        raise NotFoundError("No runner image found in CI file")
    return match.group("yaml") or match.group("groovy")


def runner_image_modification(
    path: str, content: str, new_image: str
) -> ContentModifications:
    """Build the patch replacing the runner image of ``path`` with ``new_image``."""
    return ContentModifications().add(path, find_runner_image(content), new_image)
