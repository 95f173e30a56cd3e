import json
import typing

import pulumi_aws as aws
import pulumi_kubernetes as k8s


def get_provider_for_cluster(name: str, kubeconfig: str) -> k8s.Provider:
    return k8s.Provider(
        f"{name}-k8s",
        args=k8s.ProviderArgs(
            enable_server_side_apply=True,
            kubeconfig=kubeconfig,
        ),
    )


def cluster_kubeconfig(cluster: aws.eks.GetClusterResult, region: str | None = None) -> str:
    return get_kubeconfig_for_cluster(
        cluster.name, cluster.endpoint, cluster.certificate_authorities[0].data, region=region
    )


def get_kubeconfig_for_cluster(name: str, endpoint: str, ca_data: str, region: str | None = None) -> str:
    args = ["eks", "get-token", "--cluster-name", name]
    if region is not None:
        args += ["--region", region]

    k: dict[str, typing.Any] = {
        "apiVersion": "v1",
        "clusters": [
            {
                "cluster": {
                    "server": endpoint,
                    "certificate-authority-data": ca_data,
                },
                "name": "kubernetes",
            }
        ],
        "contexts": [
            {
                "context": {
                    "cluster": "kubernetes",
                    "user": "aws",
                },
                "name": "aws",
            }
        ],
        "current-context": "aws",
        "kind": "Config",
        "users": [
            {
                "name": "aws",
                "user": {
                    "exec": {
                        "apiVersion": "client.authentication.k8s.io/v1",
                        "command": "aws",
                        "args": args,
                        "interactiveMode": "IfAvailable",
                        "provideClusterInfo": False,
                    },
                },
            }
        ],
    }

    return json.dumps(k)
