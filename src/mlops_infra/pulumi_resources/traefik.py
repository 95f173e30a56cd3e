import typing

import mlops_infra
import mlops_infra.platform
from mlops_infra import NodeKind
from mlops_infra.graph import Graph, Node
from mlops_infra.pulumi_resources.lib import format_lb_tags

TRAEFIK_CHART_REPO = "https://helm.traefik.io/traefik/"


def build_traefik_helm_values(
    node_selector: str,
    deployment_replicas: int,
    lb_tags: dict[str, str],
) -> dict[str, typing.Any]:
    return {
        "service": {
            "type": "LoadBalancer",
            "annotations": {
                "service.beta.kubernetes.io/aws-load-balancer-type": "external",
                "service.beta.kubernetes.io/aws-load-balancer-scheme": "internet-facing",
                "service.beta.kubernetes.io/aws-load-balancer-nlb-target-type": "ip",
                "service.beta.kubernetes.io/aws-load-balancer-additional-resource-tags": format_lb_tags(lb_tags),
            },
        },
        "nodeSelector": (
            {
                "node.kubernetes.io/instance-type": node_selector,
            }
            if node_selector
            else None
        ),
        "providers": {
            "kubernetesCRD": {
                # routes may live next to their backends in other namespaces
                "enabled": True,
                "allowCrossNamespace": True,
            },
            "kubernetesIngress": {
                "enabled": True,
            },
        },
        "deployment": {
            "replicas": deployment_replicas,
        },
        "logs": {
            "general": {"level": "INFO"},
            "access": {"enabled": True},
        },
        "ingressClass": {
            "enabled": True,
            "isDefaultClass": True,
        },
    }


def define_traefik(
    graph: Graph,
    cfg: mlops_infra.platform.TraefikConfig,
    lb_tags: dict[str, str],
    depends_on: typing.Sequence[Node] = (),
) -> Node:
    """Declare the Traefik release; routes must depend on it since it installs the CRDs."""
    return graph.add(
        Node(
            NodeKind.HELM_RELEASE,
            f"{cfg.namespace}/traefik",
            {
                "name": "traefik",
                "namespace": cfg.namespace,
                "chart": "traefik",
                "version": cfg.chart_version,
                "repo": TRAEFIK_CHART_REPO,
                "values": build_traefik_helm_values(
                    node_selector=cfg.node_selector,
                    deployment_replicas=cfg.replicas,
                    lb_tags=lb_tags,
                ),
            },
            depends_on=tuple(d.key for d in depends_on),
        )
    )
