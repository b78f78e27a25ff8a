"""Tests for RhtapEnvModifier."""

from tssc.e2e_orchestrator.modification.env_script import (
    DEFAULT_ROX_ENDPOINT_LINE,
    ENV_FILE_PATH,
    IMAGES_PARAMS_ANCHOR,
    RhtapEnvModifier,
)

ENV_SCRIPT = f"""#!/bin/bash
export DISABLE_ACS=${{DISABLE_ACS-false}}
{DEFAULT_ROX_ENDPOINT_LINE}
export TUF_MIRROR=${{TUF_MIRROR-http://tuf.tssc-tas.svc}}
export REKOR_HOST=${{REKOR_HOST-http://rekor-server.tssc-tas.svc}}
{IMAGES_PARAMS_ANCHOR}
export IMAGE_URL=quay.io/org/app
"""


def test_env_modifier_updates_endpoints() -> None:
    """URLs and endpoints are replaced with the cluster's values."""
    result = (
        RhtapEnvModifier()
        .update_tuf_mirror_url("https://tuf.apps.example.com")
        .update_rekor_host("https://rekor.apps.example.com")
        .update_rox_central_endpoint("central.apps.example.com:443")
        .apply_modifications(ENV_SCRIPT)
    )

    assert "TUF_MIRROR-https://tuf.apps.example.com" in result
    assert "REKOR_HOST-https://rekor.apps.example.com" in result
    assert 'export ROX_CENTRAL_ENDPOINT="central.apps.example.com:443"' in result


def test_disable_acs() -> None:
    """disable_acs forces the ACS steps off."""
    result = RhtapEnvModifier().disable_acs().apply_modifications(ENV_SCRIPT)

    assert "export DISABLE_ACS=true" in result


def test_exports_follow_the_anchor() -> None:
    """Exports are inserted right after the images anchor, newest first."""
    result = (
        RhtapEnvModifier()
        .enable_cosign_public_key("cHViCg==")
        .enable_image_registry_user("robot")
        .apply_modifications(ENV_SCRIPT)
    )

    assert (
        f"{IMAGES_PARAMS_ANCHOR}\n"
        'export IMAGE_REGISTRY_USER="robot"\n'
        'export COSIGN_PUBLIC_KEY="cHViCg=="\n'
        "export IMAGE_URL"
    ) in result


def test_modifications_target_env_file() -> None:
    """All patches are registered for rhtap/env.sh."""
    mods = RhtapEnvModifier().disable_acs().enable_custom_root_ca("CA").get_modifications()

    assert mods.paths() == [ENV_FILE_PATH]
    assert mods.total_count() == 2
