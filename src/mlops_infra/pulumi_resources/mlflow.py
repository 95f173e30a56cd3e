import typing

import mlops_infra
import mlops_infra.platform
from mlops_infra import NodeKind
from mlops_infra.graph import Graph, Node

MLFLOW_CHART_REPO = "https://larribas.me/helm-charts"


def build_mlflow_helm_values(
    db_host: typing.Any,
    db_port: typing.Any,
    db_name: str,
    db_username: typing.Any,
    db_password: typing.Any,
    artifact_root: typing.Any,
    service_account_name: str,
) -> dict[str, typing.Any]:
    """
    Helm values for the MLflow tracking server. Database and bucket values may be
    outputs of resources that are still being created.
    """
    return {
        "backendStore": {
            "postgres": {
                "username": db_username,
                "password": db_password,
                "host": db_host,
                "port": db_port,
                "database": db_name,
            },
        },
        "defaultArtifactRoot": artifact_root,
        # the account comes from the IRSA binding, the chart must not create its own
        "serviceAccount": {
            "create": False,
            "name": service_account_name,
        },
    }


def define_mlflow(
    graph: Graph,
    cfg: mlops_infra.platform.MLflowConfig,
    values: dict[str, typing.Any],
    depends_on: typing.Sequence[Node] = (),
) -> tuple[Node, Node]:
    """
    Declare the MLflow release and the Service it creates.

    :return: (release node, service node); route the service node, not the release
    """
    release = graph.add(
        Node(
            NodeKind.HELM_RELEASE,
            f"{cfg.namespace}/mlflow",
            {
                "name": "mlflow",
                "namespace": cfg.namespace,
                "chart": "mlflow",
                "version": cfg.chart_version,
                "repo": MLFLOW_CHART_REPO,
                "values": values,
            },
            depends_on=tuple(d.key for d in depends_on),
        )
    )

    # the chart names its Service after the release
    service = graph.add(
        Node(
            NodeKind.SERVICE,
            f"{cfg.namespace}/mlflow",
            {
                "name": release.output("name"),
                "namespace": release.output("namespace"),
                "port": cfg.service_port,
            },
        )
    )

    return release, service
