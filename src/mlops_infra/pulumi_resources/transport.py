import json
import typing

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s

import mlops_infra
from mlops_infra import NodeKind
from mlops_infra.graph import Node

ResourceBuilder = typing.Callable[
    [Node, dict[str, typing.Any], pulumi.ResourceOptions],
    tuple[pulumi.Resource, dict[str, typing.Any]],
]


def _resource_name(node: Node) -> str:
    return node.name.replace("/", "-")


class PulumiTransport:
    """
    Create Pulumi resources for graph nodes.

    Every resource is parented to `parent` and depends on the resources created for the
    node's graph dependencies. Kubernetes objects use `kube_provider`.
    """

    parent: pulumi.Resource
    kube_provider: k8s.Provider | None
    required_tags: dict[str, str]
    resources: dict[str, pulumi.Resource]

    def __init__(
        self,
        parent: pulumi.Resource,
        kube_provider: k8s.Provider | None = None,
        required_tags: dict[str, str] | None = None,
    ):
        self.parent = parent
        self.kube_provider = kube_provider
        self.required_tags = required_tags or {}
        self.resources = {}
        self._builders: dict[NodeKind, ResourceBuilder] = {
            NodeKind.HELM_RELEASE: self._helm_release,
            NodeKind.IAM_ROLE: self._iam_role,
            NodeKind.IAM_ROLE_POLICY: self._iam_role_policy,
            NodeKind.NAMESPACE: self._namespace,
            NodeKind.SERVICE: self._service,
            NodeKind.SERVICE_ACCOUNT: self._service_account,
            NodeKind.TRAEFIK_INGRESS_ROUTE: self._ingress_route,
            NodeKind.TRAEFIK_MIDDLEWARE: self._middleware,
        }

    def create(
        self,
        node: Node,
        inputs: dict[str, typing.Any],
        dependencies: list[Node],
    ) -> typing.Mapping[str, typing.Any]:
        builder = self._builders.get(node.kind)
        if builder is None:
            msg = f"no resource builder for node kind {node.kind!r}"
            raise mlops_infra.ProvisioningFailure(msg, node.key)

        opts = pulumi.ResourceOptions(
            parent=self.parent,
            depends_on=[self.resources[d.key] for d in dependencies if d.key in self.resources],
        )
        resource, outputs = builder(node, inputs, opts)
        self.resources[node.key] = resource

        return outputs

    def _k8s_opts(self, opts: pulumi.ResourceOptions) -> pulumi.ResourceOptions:
        if self.kube_provider is None:
            return opts
        return pulumi.ResourceOptions.merge(opts, pulumi.ResourceOptions(provider=self.kube_provider))

    def _iam_role(self, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        role = aws.iam.Role(
            inputs["name"],
            aws.iam.RoleArgs(
                name=inputs["name"],
                assume_role_policy=json.dumps(inputs["assume_role_policy"]),
                tags=self.required_tags | inputs.get("tags", {}),
            ),
            opts=pulumi.ResourceOptions.merge(opts, pulumi.ResourceOptions(delete_before_replace=True)),
        )
        return role, {"arn": role.arn, "name": role.name}

    def _iam_role_policy(self, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        # bucket ARNs inside the document may still be outputs of other resources
        role_policy = aws.iam.RolePolicy(
            inputs["name"],
            name=inputs["name"],
            role=inputs["role"],
            policy=pulumi.Output.json_dumps(inputs["policy"]),
            opts=opts,
        )
        return role_policy, {"id": role_policy.id, "name": inputs["name"]}

    def _namespace(self, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        namespace = k8s.core.v1.Namespace(
            f"{_resource_name(node)}-ns",
            metadata=k8s.meta.v1.ObjectMetaArgs(
                name=inputs["name"],
                labels=inputs.get("labels"),
            ),
            opts=self._k8s_opts(opts),
        )
        return namespace, {"id": namespace.id, "name": inputs["name"]}

    def _service_account(self, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        service_account = k8s.core.v1.ServiceAccount(
            _resource_name(node),
            metadata=k8s.meta.v1.ObjectMetaArgs(
                name=inputs["name"],
                namespace=inputs["namespace"],
                annotations=inputs.get("annotations", {}),
            ),
            automount_service_account_token=True,
            opts=self._k8s_opts(opts),
        )
        return service_account, {"id": service_account.id, "name": inputs["name"], "namespace": inputs["namespace"]}

    def _helm_release(self, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        release = k8s.helm.v3.Release(
            _resource_name(node),
            k8s.helm.v3.ReleaseArgs(
                chart=inputs["chart"],
                version=inputs.get("version"),
                namespace=inputs["namespace"],
                name=inputs["name"],
                repository_opts=k8s.helm.v3.RepositoryOptsArgs(
                    repo=inputs["repo"],
                ),
                values=inputs.get("values", {}),
            ),
            opts=pulumi.ResourceOptions.merge(
                self._k8s_opts(opts),
                pulumi.ResourceOptions(delete_before_replace=True),
            ),
        )
        return release, {"id": release.id, "name": release.name, "namespace": release.namespace}

    def _service(self, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        # the service is created by a helm release; read it back once the release exists
        service = k8s.core.v1.Service.get(
            _resource_name(node),
            id=pulumi.Output.concat(inputs["namespace"], "/", inputs["name"]),
            opts=self._k8s_opts(opts),
        )

        port = inputs.get("port")
        if port is None:
            port = service.spec.apply(lambda spec: spec.ports[0].port)

        return service, {
            "id": service.id,
            "name": inputs["name"],
            "namespace": inputs["namespace"],
            "port": port,
        }

    def _traefik_object(self, kind: str, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        obj = k8s.apiextensions.CustomResource(
            _resource_name(node),
            api_version=inputs["api_version"],
            kind=kind,
            metadata=k8s.meta.v1.ObjectMetaArgs(
                name=inputs["name"],
                namespace=inputs["namespace"],
            ),
            spec=inputs["spec"],
            opts=self._k8s_opts(opts),
        )
        return obj, {"id": obj.id, "name": inputs["name"], "namespace": inputs["namespace"]}

    def _middleware(self, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        return self._traefik_object("Middleware", node, inputs, opts)

    def _ingress_route(self, node: Node, inputs: dict[str, typing.Any], opts: pulumi.ResourceOptions):
        return self._traefik_object("IngressRoute", node, inputs, opts)
