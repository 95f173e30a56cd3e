"""
Register Traefik routes in front of backend services.

`register` declares an `IngressRoute` (and, by default, a `stripPrefix` middleware)
whose backend is a `ServiceRef`. The reference usually points at outputs of the node
that creates the service, so the route is only submitted once that node has been
evaluated and the service name, namespace and port are known.
"""

from __future__ import annotations

import dataclasses
import typing

import pulumi

import mlops_infra
from mlops_infra import NodeKind
from mlops_infra.graph import Deferred, Graph, Node

TRAEFIK_API_VERSION = "traefik.io/v1alpha1"
DEFAULT_ENTRY_POINTS = ("web", "websecure")


@dataclasses.dataclass(frozen=True, eq=False)
class ServiceRef:
    name: str | Deferred[str]
    namespace: str | Deferred[str]
    port: int | Deferred[int]
    node: Node | None = None

    @classmethod
    def from_node(cls, node: Node) -> ServiceRef:
        return cls(
            name=node.output("name"),
            namespace=node.output("namespace"),
            port=node.output("port"),
            node=node,
        )

    def resolved(self) -> tuple[str, str, int]:
        name, namespace, port = (v.get() if isinstance(v, Deferred) else v for v in (self.name, self.namespace, self.port))
        return name, namespace, port


@dataclasses.dataclass(frozen=True, eq=False)
class RouteRule:
    name: str
    prefix: str
    namespace: str
    priority: int
    service: ServiceRef
    node: Node
    middleware: Node | None = None

    def target(self) -> tuple[str, str, int]:
        """The backend as (name, namespace, port); only available once the service resolved."""
        return self.service.resolved()

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)


def validate_prefix(prefix: str) -> str:
    """
    Validate a path prefix and return it normalised (without a trailing slash, except
    for the root prefix).
    """
    if not prefix:
        msg = "path prefix must not be empty"
        raise mlops_infra.ValidationError(msg)

    if not prefix.startswith("/"):
        msg = f"path prefix must start with '/', got {prefix!r}"
        raise mlops_infra.ValidationError(msg)

    # backticks would terminate the PathPrefix() argument in the Traefik rule
    if any(c.isspace() or c == "`" for c in prefix):
        msg = f"path prefix contains whitespace or backticks: {prefix!r}"
        raise mlops_infra.ValidationError(msg)

    return prefix.rstrip("/") or "/"


def path_prefix_rule(prefix: str) -> str:
    return f"PathPrefix(`{prefix}`)"


def route_priority(prefix: str) -> int:
    """
    Priority for a prefix: the length of its rule, the value Traefik itself gives a rule
    without an explicit priority. Longer prefixes win, and a route outranks a default
    rule on a shorter path such as an Ingress on `/`.
    """
    return len(path_prefix_rule(prefix))


def build_ingress_route_spec(
    prefix: str,
    service_name: str | Deferred[str],
    service_namespace: str | Deferred[str],
    service_port: int | Deferred[int],
    priority: int,
    entry_points: typing.Sequence[str] = DEFAULT_ENTRY_POINTS,
    middlewares: typing.Sequence[tuple[str, str]] = (),
) -> dict[str, typing.Any]:
    route: dict[str, typing.Any] = {
        "kind": "Rule",
        "match": path_prefix_rule(prefix),
        "priority": priority,
        "services": [
            {
                "name": service_name,
                "namespace": service_namespace,
                "port": service_port,
            }
        ],
    }
    if middlewares:
        route["middlewares"] = [{"name": name, "namespace": namespace} for name, namespace in middlewares]

    return {
        "entryPoints": list(entry_points),
        "routes": [route],
    }


def register(
    graph: Graph,
    name: str,
    prefix: str,
    namespace: str,
    service: ServiceRef,
    *,
    strip_prefix: bool = True,
    entry_points: typing.Sequence[str] = DEFAULT_ENTRY_POINTS,
    depends_on: typing.Sequence[Node] = (),
) -> RouteRule:
    """
    Declare a route sending requests under `prefix` to `service`.

    :param graph: graph receiving the nodes
    :param name: route name, used for the IngressRoute and middleware objects
    :param prefix: path prefix, must start with '/'
    :param namespace: namespace of the IngressRoute
    :param service: backend; when bound to a node the route waits for that node
    :param strip_prefix: remove the prefix before forwarding
    :param entry_points: Traefik entry points the route listens on
    :param depends_on: other nodes the route waits for, e.g. the Traefik release
        providing the CRDs
    """
    prefix = validate_prefix(prefix)
    if not namespace:
        msg = "route namespace must not be empty"
        raise mlops_infra.ValidationError(msg)

    route_name = mlops_infra.dns_label(name)
    priority = route_priority(prefix)
    extra_deps = tuple(d.key for d in depends_on)

    middleware = None
    if strip_prefix and prefix != "/":
        middleware_name = f"{route_name}-strip-prefix"
        middleware = graph.add(
            Node(
                NodeKind.TRAEFIK_MIDDLEWARE,
                f"{namespace}/{middleware_name}",
                {
                    "name": middleware_name,
                    "namespace": namespace,
                    "api_version": TRAEFIK_API_VERSION,
                    "spec": {"stripPrefix": {"prefixes": [prefix]}},
                },
                depends_on=extra_deps,
            )
        )

    spec = build_ingress_route_spec(
        prefix=prefix,
        service_name=service.name,
        service_namespace=service.namespace,
        service_port=service.port,
        priority=priority,
        entry_points=entry_points,
        middlewares=[(middleware.inputs["name"], namespace)] if middleware is not None else [],
    )

    route_deps = extra_deps
    if service.node is not None:
        route_deps = (service.node.key, *route_deps)
    if middleware is not None:
        route_deps = (*route_deps, middleware.key)

    node = graph.add(
        Node(
            NodeKind.TRAEFIK_INGRESS_ROUTE,
            f"{namespace}/{route_name}",
            {
                "name": route_name,
                "namespace": namespace,
                "api_version": TRAEFIK_API_VERSION,
                "spec": spec,
            },
            depends_on=route_deps,
        )
    )

    pulumi.log.info(f"Registering route {prefix} -> {namespace}/{route_name} (priority {priority})")

    return RouteRule(
        name=route_name,
        prefix=prefix,
        namespace=namespace,
        priority=priority,
        service=service,
        node=node,
        middleware=middleware,
    )


def match_route(rules: typing.Iterable[RouteRule], path: str) -> RouteRule | None:
    """
    Pick the rule the proxy would use for `path`: the matching rule with the highest
    priority, the earliest one on a tie.
    """
    best: RouteRule | None = None
    for rule in rules:
        if rule.matches(path) and (best is None or rule.priority > best.priority):
            best = rule

    return best
