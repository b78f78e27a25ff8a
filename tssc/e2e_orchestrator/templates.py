"""Software templates and the sample source change each one receives."""

import time
from typing import NamedTuple

from tssc.e2e_orchestrator.errors import InvalidConfigError
from tssc.e2e_orchestrator.modification.content import ContentModifications


class SampleChange(NamedTuple):
    """File and text a sample commit touches."""

    path: str
    old_content: str


TEMPLATE_CHANGES: dict[str, SampleChange] = {
    "java-springboot": SampleChange(
        "src/main/java/com/example/demo/DemoApplication.java", "Hello World"
    ),
    "java-quarkus": SampleChange(
        "src/main/java/org/acme/GreetingResource.java", "Hello RESTEasy"
    ),
    "go": SampleChange("main.go", "Hello World"),
    "dotnet-basic": SampleChange("Views/Home/Index.cshtml", "Welcome"),
    "python": SampleChange("app.py", "Hello World"),
    "nodejs": SampleChange(
        "server.js", "res.send('Hello from Node.js Starter Application"
    ),
}

TEMPLATE_ALIASES = {
    "springboot": "java-springboot",
    "quarkus": "java-quarkus",
    "dotnet": "dotnet-basic",
}


def canonical_template(template: str) -> str:
    """Map short template names to their full template names."""
    return TEMPLATE_ALIASES.get(template, template)


def sample_change_modifications(template: str) -> ContentModifications:
    """Build the timestamped source change used to trigger a build.

    Raises:
        InvalidConfigError: If the template is unknown

    """
    change = TEMPLATE_CHANGES.get(canonical_template(template))
    if change is None:
        raise InvalidConfigError(f"Invalid template: {template}")
    marker = f"{change.old_content} - Updated! {int(time.time() * 1000)} "
    return ContentModifications().add(change.path, change.old_content, marker)
