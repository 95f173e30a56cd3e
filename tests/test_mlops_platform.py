"""Tests for the MLOpsPlatform component under Pulumi mocks."""

import dataclasses
import json
from unittest.mock import MagicMock, patch

import pulumi
import pulumi_kubernetes as k8s
import pytest

import mlops_infra
import mlops_infra.platform
from mlops_infra.aws_iam import AccessLevel
from mlops_infra.pulumi_resources.mlops_platform import MLOpsPlatform

CLUSTER_ENDPOINT = "https://EXAMPLED539D4633E53DE1B71EXAMPLE.gr7.us-east-2.eks.amazonaws.com"


@pytest.fixture
def eks_cluster():
    cluster = MagicMock()
    cluster.name = "ml01-staging"
    cluster.endpoint = CLUSTER_ENDPOINT
    cluster.certificate_authorities[0].data = "Q0EK"
    cluster.vpc_config.cluster_security_group_id = "sg-cluster"
    cluster.vpc_config.subnet_ids = ["subnet-a", "subnet-b"]

    with patch("mlops_infra.pulumi_resources.mlops_platform.aws.eks.get_cluster", return_value=cluster) as get_cluster:
        yield get_cluster


@pulumi.runtime.test
def test_mlops_platform(pulumi_mocks, platform, identity_provider, eks_cluster):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    mp = MLOpsPlatform(
        platform=platform,
        identity_provider=identity_provider,
        kube_provider=k8s.Provider("ml01-staging-k8s"),
    )

    assert set(mp.buckets) == {"mlflow", "dvc"}
    assert mp.required_tags["mlops/managed-by"] == "mlops_infra.pulumi_resources.mlops_platform"

    assert set(mp.bindings) == {"mlflow", "models"}
    assert mp.bindings["mlflow"].access_level == AccessLevel.READ_WRITE
    assert mp.bindings["mlflow"].namespace == "mlflow"
    assert mp.bindings["models"].access_level == AccessLevel.READ_ONLY
    assert mp.bindings["models"].namespace == "default"

    assert mp.routes["mlflow"].prefix == "/mlflow"
    assert mp.routes["mlflow"].service.node is mp.mlflow_service

    # every declared node was handed to the transport
    assert all(node.evaluated for node in mp.graph)
    assert set(mp.transport.resources) == {node.key for node in mp.graph}
    assert "namespace/default" not in mp.graph
    assert {"namespace/mlflow", "namespace/traefik"} <= set(mp.transport.resources)

    order = [node.key for node in mp.graph.order()]
    assert order.index("helm-release/traefik/traefik") < order.index("traefik-ingress-route/mlflow/mlflow")
    assert order.index("service-account/mlflow/mlflow") < order.index("helm-release/mlflow/mlflow")

    def check(args):
        mlflow_arn, models_arn = args
        assert mlflow_arn == "arn:aws:iam::123456789012:role/mlflow-mlflow"
        assert models_arn == "arn:aws:iam::123456789012:role/default-models"

    return pulumi.Output.all(
        mp.bindings["mlflow"].role_arn.get(),
        mp.bindings["models"].role_arn.get(),
    ).apply(check)


@pulumi.runtime.test
def test_mlops_platform_identity_lookup_fails(pulumi_mocks, platform, eks_cluster):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    with (
        patch(
            "mlops_infra.pulumi_resources.mlops_platform.mlops_infra.oidc.aws_eks_cluster_identity_provider",
            return_value=(None, False),
        ),
        pytest.raises(mlops_infra.ConfigurationError, match="ml01-staging"),
    ):
        MLOpsPlatform(platform=platform, kube_provider=k8s.Provider("ml01-staging-k8s"))


@pulumi.runtime.test
def test_mlops_platform_cluster_without_oidc(pulumi_mocks, platform, eks_cluster):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    with (
        patch(
            "mlops_infra.pulumi_resources.mlops_platform.mlops_infra.oidc.aws_eks_cluster_identity_provider",
            return_value=(None, True),
        ),
        pytest.raises(mlops_infra.ConfigurationError, match="OIDC provider"),
    ):
        MLOpsPlatform(platform=platform, kube_provider=k8s.Provider("ml01-staging-k8s"))


@pulumi.runtime.test
def test_mlops_platform_database_uses_cluster_network(pulumi_mocks, platform, identity_provider, eks_cluster):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    mp = MLOpsPlatform(
        platform=platform,
        identity_provider=identity_provider,
        kube_provider=k8s.Provider("ml01-staging-k8s"),
    )

    eks_cluster.assert_called_once_with(name="ml01-staging")

    def check(args):
        security_group_ids, subnet_ids = args
        assert security_group_ids == ["sg-cluster"]
        assert subnet_ids == ["subnet-a", "subnet-b"]

    return pulumi.Output.all(mp.db.vpc_security_group_ids, mp.db_subnet_group.subnet_ids).apply(check)


@pulumi.runtime.test
def test_mlops_platform_database_security_groups_from_config(pulumi_mocks, platform, identity_provider, eks_cluster):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    platform.cfg = dataclasses.replace(
        platform.cfg,
        database=mlops_infra.platform.DatabaseConfig(security_group_ids=["sg-db"]),
    )
    mp = MLOpsPlatform(
        platform=platform,
        identity_provider=identity_provider,
        kube_provider=k8s.Provider("ml01-staging-k8s"),
    )

    def check(security_group_ids):
        assert security_group_ids == ["sg-db"]

    return mp.db.vpc_security_group_ids.apply(check)


@pulumi.runtime.test
def test_mlops_platform_exports_kubeconfig_as_secret(pulumi_mocks, platform, identity_provider, eks_cluster):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    with patch("mlops_infra.pulumi_resources.mlops_platform.pulumi.export") as export:
        mp = MLOpsPlatform(
            platform=platform,
            identity_provider=identity_provider,
            kube_provider=k8s.Provider("ml01-staging-k8s"),
        )

    kubeconfig = json.loads(mp.kubeconfig)
    assert kubeconfig["clusters"][0]["cluster"]["server"] == CLUSTER_ENDPOINT
    assert "--region" in kubeconfig["users"][0]["user"]["exec"]["args"]

    exported = {call.args[0]: call.args[1] for call in export.call_args_list}
    assert isinstance(exported["kubeconfig"], pulumi.Output)

    def check(args):
        value, is_secret = args
        assert value == mp.kubeconfig
        assert is_secret

    return pulumi.Output.all(
        exported["kubeconfig"],
        pulumi.Output.from_input(exported["kubeconfig"].is_secret()),
    ).apply(check)
