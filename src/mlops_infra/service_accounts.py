"""
Bind in-cluster service accounts to scoped IAM roles (IRSA).

`bind` declares three nodes: an IAM role trusted only by one namespace/service
account pair, an inline policy granting the declared S3 access level, and the
Kubernetes ServiceAccount annotated with the role ARN.
"""

from __future__ import annotations

import dataclasses
import hashlib
import typing

import pulumi

import mlops_infra
import mlops_infra.aws_iam
import mlops_infra.oidc
from mlops_infra import NodeKind
from mlops_infra.aws_iam import AccessLevel
from mlops_infra.graph import Deferred, Graph, Node


@dataclasses.dataclass(frozen=True, eq=False)
class AccessBinding:
    name: str
    namespace: str
    access_level: AccessLevel
    role_name: str
    service_account_name: str
    policy_document: dict[str, typing.Any]
    trust_policy: dict[str, typing.Any]
    role: Node
    role_policy: Node
    service_account: Node

    @property
    def role_arn(self) -> Deferred[str]:
        return self.role.output("arn")


def service_account_name(name: str) -> str:
    return mlops_infra.dns_label(name)


def role_name(namespace: str, service_account: str) -> str:
    name = f"{namespace}-{service_account}"
    if len(name) <= mlops_infra.IAM_ROLE_NAME_MAX_LENGTH:
        return name

    digest = hashlib.sha256(name.encode(), usedforsecurity=False).hexdigest()[:8]
    return f"{name[: mlops_infra.IAM_ROLE_NAME_MAX_LENGTH - len(digest) - 1]}-{digest}"


def _validate_namespace(namespace: str) -> None:
    if not namespace or mlops_infra.DNS_LABEL_REGEX.match(namespace) is None:
        msg = f"namespace must be a non-empty DNS label, got {namespace!r}"
        raise mlops_infra.ValidationError(msg)


def bind(
    graph: Graph,
    name: str,
    namespace: str,
    provider: mlops_infra.oidc.FederatedIdentityProvider | None,
    access_level: AccessLevel | str,
    bucket_arns: typing.Sequence[typing.Any],
    *,
    depends_on: typing.Sequence[Node] = (),
    tags: dict[str, str] | None = None,
) -> AccessBinding:
    """
    Declare the IAM role, its S3 policy and the annotated ServiceAccount for `name`.

    :param graph: graph receiving the nodes
    :param name: logical name; the ServiceAccount name is derived from it
    :param namespace: namespace the ServiceAccount lives in and the role trusts
    :param provider: the cluster's federated identity provider
    :param access_level: S3 access granted on `bucket_arns`
    :param bucket_arns: ARNs (or deferred ARNs) of the buckets the role may use
    :param depends_on: nodes the ServiceAccount waits for, e.g. its namespace
    :param tags: tags for the IAM role
    :return: AccessBinding; pass `service_account_name` to pod specs
    """
    _validate_namespace(namespace)
    provider = mlops_infra.oidc.require_provider(provider)
    level = mlops_infra.aws_iam.access_level(access_level)

    sa_name = service_account_name(name)
    iam_role_name = role_name(namespace, sa_name)

    policy_document = mlops_infra.aws_iam.build_bucket_access_policy(level, bucket_arns)
    trust_policy = mlops_infra.aws_iam.build_irsa_role_assume_role_policy(
        provider=provider,
        namespace=namespace,
        service_accounts=[sa_name],
    )

    role = graph.add(
        Node(
            NodeKind.IAM_ROLE,
            iam_role_name,
            {
                "name": iam_role_name,
                "assume_role_policy": trust_policy,
                "tags": tags or {},
            },
        )
    )

    role_policy = graph.add(
        Node(
            NodeKind.IAM_ROLE_POLICY,
            f"{iam_role_name}-s3",
            {
                "name": f"{iam_role_name}-s3",
                "role": role.output("name"),
                "policy": policy_document,
            },
        )
    )

    # the role must carry its policy before pods can pick up credentials
    service_account = graph.add(
        Node(
            NodeKind.SERVICE_ACCOUNT,
            f"{namespace}/{sa_name}",
            {
                "name": sa_name,
                "namespace": namespace,
                "annotations": {
                    mlops_infra.IRSA_ROLE_ARN_ANNOTATION: role.output("arn"),
                },
            },
            depends_on=(role_policy.key, *(d.key for d in depends_on)),
        )
    )

    pulumi.log.info(f"Binding service account {namespace}/{sa_name} to role {iam_role_name} ({level})")

    return AccessBinding(
        name=name,
        namespace=namespace,
        access_level=level,
        role_name=iam_role_name,
        service_account_name=sa_name,
        policy_document=role_policy.inputs["policy"],
        trust_policy=role.inputs["assume_role_policy"],
        role=role,
        role_policy=role_policy,
        service_account=service_account,
    )
