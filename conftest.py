"""Shared pytest fixtures for the MLOps Pulumi tests.

- mlops_root: Sets MLOPS_ROOT environment variable
- pulumi_mocks: Standard Pulumi mock class for resource tests
- identity_provider: OIDC provider of a fake cluster
- platform: Platform with sensible defaults and no yaml on disk
"""

import pathlib
import typing

import pulumi
import pytest

import mlops_infra.oidc
import mlops_infra.platform


@pytest.fixture
def mlops_root(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> pathlib.Path:
    """Set MLOPS_ROOT environment variable to a temporary directory.

    Usage:
        def test_something(mlops_root):
            paths = Paths()
            assert paths.root == mlops_root
    """
    monkeypatch.setenv("MLOPS_ROOT", str(tmp_path))
    return tmp_path


class StandardPulumiMocks(pulumi.runtime.Mocks):
    """Returns resource names as IDs and echoes back all inputs as outputs."""

    def new_resource(self, args: pulumi.runtime.MockResourceArgs) -> tuple[str | None, dict[typing.Any, typing.Any]]:
        outputs = dict(args.inputs)
        if args.typ == "aws:iam/role:Role":
            outputs["arn"] = f"arn:aws:iam::123456789012:role/{args.inputs.get('name', args.name)}"
        if args.typ == "aws:s3/bucket:Bucket":
            outputs["arn"] = f"arn:aws:s3:::{args.inputs.get('bucket', args.name)}"
        return args.name, outputs

    def call(
        self, args: pulumi.runtime.MockCallArgs
    ) -> dict[typing.Any, typing.Any] | tuple[dict[typing.Any, typing.Any], list[tuple[str, str]] | None]:
        return {}


@pytest.fixture
def pulumi_mocks() -> type[pulumi.runtime.Mocks]:
    """Returns the standard Pulumi mocks class.

    The mocks are not set automatically; call set_mocks() in the test:

        @pulumi.runtime.test
        def test_my_resource(pulumi_mocks):
            pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)
    """
    return StandardPulumiMocks


@pytest.fixture
def identity_provider() -> mlops_infra.oidc.FederatedIdentityProvider:
    return mlops_infra.oidc.FederatedIdentityProvider.from_issuer(
        "https://oidc.eks.us-east-2.amazonaws.com/id/EXAMPLED539D4633E53DE1B71EXAMPLE",
        account_id="123456789012",
        cluster_name="ml01-staging",
    )


@pytest.fixture
def platform(mlops_root: pathlib.Path) -> mlops_infra.platform.Platform:
    """Platform "ml01-staging" in account 123456789012 with default components."""
    p = mlops_infra.platform.Platform(name="ml01-staging", paths=None, load_yaml=False)
    p.cfg = mlops_infra.platform.PlatformConfig(
        true_name="ml01",
        environment="staging",
        account_id="123456789012",
        cluster_name="ml01-staging",
        domain="ml.example.com",
    )

    return p
