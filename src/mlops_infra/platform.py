from __future__ import annotations

import dataclasses
import pathlib
import typing

import deepmerge  # type: ignore
import yaml

import mlops_infra
import mlops_infra.aws_iam
import mlops_infra.paths
from mlops_infra.aws_iam import AccessLevel

MLFLOW_BUCKET = "mlflow"
DVC_BUCKET = "dvc"
BUCKETS = (MLFLOW_BUCKET, DVC_BUCKET)

# binding name of the MLflow server's own service account
MLFLOW_BINDING = "mlflow"


@dataclasses.dataclass(frozen=True)
class DatabaseConfig:
    allocated_storage: int = 10
    engine_version: str = "14"
    instance_class: str = "db.t3.micro"
    name: str = "mlflow"
    username: str = "postgres"
    security_group_ids: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(frozen=True)
class MLflowConfig:
    namespace: str = mlops_infra.MLFLOW_NAMESPACE
    chart_version: str | None = None
    route_prefix: str = "/mlflow"
    service_account: str = "mlflow"
    service_port: int = 5000


@dataclasses.dataclass(frozen=True)
class TraefikConfig:
    namespace: str = mlops_infra.TRAEFIK_NAMESPACE
    chart_version: str = "24.0.0"
    replicas: int = 2
    node_selector: str = ""


@dataclasses.dataclass(frozen=True)
class ServiceAccountConfig:
    name: str
    namespace: str = mlops_infra.DEFAULT_NAMESPACE
    access_level: AccessLevel = AccessLevel.READ_ONLY
    buckets: list[str] = dataclasses.field(default_factory=lambda: [MLFLOW_BUCKET])

    def __post_init__(self):
        object.__setattr__(self, "access_level", mlops_infra.aws_iam.access_level(self.access_level))

        unknown = [b for b in self.buckets if b not in BUCKETS]
        if unknown or not self.buckets:
            msg = f"service account {self.name!r} must use buckets from {', '.join(BUCKETS)}, got {self.buckets}"
            raise mlops_infra.ValidationError(msg)


def default_service_accounts() -> list[ServiceAccountConfig]:
    # model serving workloads read artifacts and datasets but never write them
    return [
        ServiceAccountConfig(
            name="models",
            namespace=mlops_infra.DEFAULT_NAMESPACE,
            access_level=AccessLevel.READ_ONLY,
            buckets=[MLFLOW_BUCKET, DVC_BUCKET],
        )
    ]


@dataclasses.dataclass(frozen=True)
class PlatformConfig:
    true_name: str
    environment: str
    account_id: str
    cluster_name: str
    region: str = "us-east-2"
    domain: str = ""
    database: DatabaseConfig = dataclasses.field(default_factory=DatabaseConfig)
    mlflow: MLflowConfig = dataclasses.field(default_factory=MLflowConfig)
    traefik: TraefikConfig = dataclasses.field(default_factory=TraefikConfig)
    service_accounts: list[ServiceAccountConfig] = dataclasses.field(default_factory=default_service_accounts)

    def __post_init__(self):
        seen = {MLFLOW_BINDING}
        for sa in self.service_accounts:
            if sa.name in seen:
                msg = f"service account name {sa.name!r} is reserved or already in use"
                raise mlops_infra.ConfigurationError(msg)
            seen.add(sa.name)

    @property
    def mlflow_tracking_uri(self) -> str:
        if self.domain == "":
            return ""
        return f"http://{self.domain}{self.mlflow.route_prefix}"


def _normalize_keys(value: typing.Any) -> typing.Any:
    if isinstance(value, dict):
        return {str(k).replace("-", "_"): _normalize_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize_keys(v) for v in value]
    return value


def load_platform_config(spec: dict[str, typing.Any]) -> PlatformConfig:
    spec = _normalize_keys(spec)

    missing = [key for key in ("account_id", "cluster_name") if not spec.get(key)]
    if missing:
        msg = f"platform config is missing required keys: {', '.join(missing)}"
        raise mlops_infra.ConfigurationError(msg)

    try:
        nested: dict[str, typing.Any] = {
            "database": DatabaseConfig(**spec.pop("database", {})),
            "mlflow": MLflowConfig(**spec.pop("mlflow", {})),
            "traefik": TraefikConfig(**spec.pop("traefik", {})),
        }
        if "service_accounts" in spec:
            nested["service_accounts"] = [ServiceAccountConfig(**sa) for sa in spec.pop("service_accounts")]

        return PlatformConfig(**spec, **nested)
    except TypeError as e:
        msg = f"invalid platform config: {e}"
        raise mlops_infra.ConfigurationError(msg) from e


class Platform:
    d: pathlib.Path
    cfg: PlatformConfig
    spec: dict[str, typing.Any]

    def __init__(self, name: str, paths: mlops_infra.paths.Paths | None = None, *, load_yaml=True):
        self.d = (paths or mlops_infra.paths.Paths()).platforms / name

        if not load_yaml:
            return

        if not self.mlops_yaml.exists():
            msg = f"platform config not found at {self.mlops_yaml}"
            raise mlops_infra.ConfigurationError(msg)

        self.cfg = self._load_config()

    @property
    def mlops_yaml(self) -> pathlib.Path:
        return self.d / "mlops.yaml"

    @property
    def compound_name(self) -> str:
        return f"{self.cfg.true_name}-{self.cfg.environment}"

    @property
    def required_tags(self) -> dict[str, str]:
        return {
            str(mlops_infra.TagKeys.MLOPS_TRUE_NAME): self.cfg.true_name,
            str(mlops_infra.TagKeys.MLOPS_ENVIRONMENT): self.cfg.environment,
        }

    def bucket_name(self, bucket: str) -> str:
        return f"{self.compound_name}-{bucket}"

    def _load_config(self) -> PlatformConfig:
        if "-" not in self.d.name:
            msg = f"platform name {self.d.name!r} must look like '<true-name>-<environment>'"
            raise mlops_infra.ConfigurationError(msg)

        true_name, environment = self.d.name.rsplit("-", maxsplit=1)

        if environment not in mlops_infra.Environments:
            msg = f"Environment {environment!r} is not supported"
            raise mlops_infra.ConfigurationError(msg)

        spec: dict[str, typing.Any] = {
            "environment": environment,
            "true_name": true_name,
            "region": "us-east-2",
            "database": {},
            "mlflow": {},
            "traefik": {},
        }

        cfg_dict = yaml.safe_load(self.mlops_yaml.read_text()) or {}

        deepmerge.always_merger.merge(
            spec,
            _normalize_keys(cfg_dict.get("spec", {})),
        )

        self.spec = spec
        return load_platform_config(dict(spec))
