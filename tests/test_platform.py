"""Tests for loading platform configuration from mlops.yaml."""

import pathlib
import textwrap

import pytest

import mlops_infra
import mlops_infra.platform
from mlops_infra.aws_iam import AccessLevel


def _write_platform(root: pathlib.Path, name: str, content: str) -> None:
    d = root / "__platforms__" / name
    d.mkdir(parents=True)
    (d / "mlops.yaml").write_text(textwrap.dedent(content))


def test_load_platform(mlops_root: pathlib.Path) -> None:
    _write_platform(
        mlops_root,
        "ml01-staging",
        """
        apiVersion: mlops/v1
        kind: Platform
        spec:
          account-id: "123456789012"
          cluster-name: ml01-staging
          domain: ml.example.com
          mlflow:
            route-prefix: /tracking
          traefik:
            replicas: 3
          service-accounts:
            - name: trainer
              namespace: training
              access-level: read-write
              buckets: [mlflow, dvc]
        """,
    )

    p = mlops_infra.platform.Platform("ml01-staging")

    assert p.cfg.true_name == "ml01"
    assert p.cfg.environment == "staging"
    assert p.cfg.account_id == "123456789012"
    assert p.cfg.region == "us-east-2"
    assert p.cfg.mlflow.route_prefix == "/tracking"
    assert p.cfg.mlflow.namespace == "mlflow"
    assert p.cfg.traefik.replicas == 3
    assert p.cfg.traefik.chart_version == "24.0.0"
    assert p.cfg.database.engine_version == "14"

    (trainer,) = p.cfg.service_accounts
    assert trainer.name == "trainer"
    assert trainer.namespace == "training"
    assert trainer.access_level == AccessLevel.READ_WRITE
    assert trainer.buckets == ["mlflow", "dvc"]

    assert p.compound_name == "ml01-staging"
    assert p.bucket_name("dvc") == "ml01-staging-dvc"
    assert p.cfg.mlflow_tracking_uri == "http://ml.example.com/tracking"
    assert p.required_tags == {"mlops/true-name": "ml01", "mlops/environment": "staging"}


def test_load_platform_defaults(mlops_root: pathlib.Path) -> None:
    _write_platform(
        mlops_root,
        "ml01-production",
        """
        spec:
          account_id: "123456789012"
          cluster_name: ml01-production
        """,
    )

    cfg = mlops_infra.platform.Platform("ml01-production").cfg

    assert cfg.mlflow_tracking_uri == ""
    (models,) = cfg.service_accounts
    assert models.name == "models"
    assert models.access_level == AccessLevel.READ_ONLY
    assert models.buckets == ["mlflow", "dvc"]


def test_platform_yaml_missing(mlops_root: pathlib.Path) -> None:
    with pytest.raises(mlops_infra.ConfigurationError, match="not found"):
        mlops_infra.platform.Platform("ml01-staging")


def test_platform_unsupported_environment(mlops_root: pathlib.Path) -> None:
    _write_platform(mlops_root, "ml01-qa", "spec: {}\n")

    with pytest.raises(mlops_infra.ConfigurationError, match="'qa' is not supported"):
        mlops_infra.platform.Platform("ml01-qa")


def test_platform_name_without_environment(mlops_root: pathlib.Path) -> None:
    _write_platform(mlops_root, "ml01", "spec: {}\n")

    with pytest.raises(mlops_infra.ConfigurationError, match="<true-name>-<environment>"):
        mlops_infra.platform.Platform("ml01")


def test_platform_missing_required_keys(mlops_root: pathlib.Path) -> None:
    _write_platform(mlops_root, "ml01-staging", "spec:\n  domain: ml.example.com\n")

    with pytest.raises(mlops_infra.ConfigurationError, match="account_id, cluster_name"):
        mlops_infra.platform.Platform("ml01-staging")


def test_load_platform_config_unknown_key() -> None:
    with pytest.raises(mlops_infra.ConfigurationError, match="invalid platform config"):
        mlops_infra.platform.load_platform_config(
            {
                "true_name": "ml01",
                "environment": "staging",
                "account_id": "123456789012",
                "cluster_name": "ml01-staging",
                "mlflow": {"replicas": 2},
            }
        )


def test_service_account_config_validation() -> None:
    with pytest.raises(mlops_infra.ValidationError, match="buckets"):
        mlops_infra.platform.ServiceAccountConfig(name="x", buckets=["scratch"])

    with pytest.raises(mlops_infra.ValidationError, match="buckets"):
        mlops_infra.platform.ServiceAccountConfig(name="x", buckets=[])

    with pytest.raises(mlops_infra.ValidationError, match="access level"):
        mlops_infra.platform.ServiceAccountConfig(name="x", access_level="admin")

    sa = mlops_infra.platform.ServiceAccountConfig(name="x", access_level="read-write")
    assert sa.access_level is AccessLevel.READ_WRITE
    assert sa.namespace == "default"


@pytest.mark.parametrize(
    "service_accounts",
    [
        [{"name": "mlflow", "namespace": "training"}],
        [{"name": "trainer"}, {"name": "trainer", "namespace": "training"}],
    ],
)
def test_load_platform_config_rejects_clashing_service_account_names(service_accounts: list[dict]) -> None:
    with pytest.raises(mlops_infra.ConfigurationError, match="reserved or already in use"):
        mlops_infra.platform.load_platform_config(
            {
                "true_name": "ml01",
                "environment": "staging",
                "account_id": "123456789012",
                "cluster_name": "ml01-staging",
                "service_accounts": service_accounts,
            }
        )
