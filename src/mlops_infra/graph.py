"""
Explicit dependency graph of typed resource nodes.

Nodes carry their inputs as plain data that may embed `Deferred` cells produced by
other nodes. The graph discovers data dependencies from those cells, orders the
nodes topologically and hands each one, with its inputs resolved, to a
`Transport` that actually creates the resource.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import typing

import pulumi

from mlops_infra import ConfigurationError, DependencyNotReadyError, NodeKind, ProvisioningFailure

T = typing.TypeVar("T")
U = typing.TypeVar("U")

_UNSET: typing.Any = object()


class Deferred(typing.Generic[T]):
    """A value cell that is resolved exactly once and is read-only afterwards."""

    def __init__(self, description: str = "", sources: typing.Iterable[str] = ()):
        self.description = description
        self.sources: frozenset[str] = frozenset(sources)
        self._value: typing.Any = _UNSET
        self._callbacks: list[typing.Callable[[T], None]] = []

    def __repr__(self) -> str:
        state = repr(self._value) if self.resolved else "<pending>"
        return f"Deferred({self.description or '?'}={state})"

    @classmethod
    def of(cls, value: T, description: str = "") -> Deferred[T]:
        cell: Deferred[T] = cls(description)
        cell.resolve(value)
        return cell

    @staticmethod
    def all(*cells: Deferred[typing.Any]) -> Deferred[tuple[typing.Any, ...]]:
        joined: Deferred[tuple[typing.Any, ...]] = Deferred(
            "all(" + ", ".join(c.description for c in cells) + ")",
            frozenset().union(*(c.sources for c in cells)),
        )

        def maybe_resolve(_: typing.Any) -> None:
            if not joined.resolved and all(c.resolved for c in cells):
                joined.resolve(tuple(c.get() for c in cells))

        if not cells:
            joined.resolve(())
        for cell in cells:
            cell._subscribe(maybe_resolve)

        return joined

    @property
    def resolved(self) -> bool:
        return self._value is not _UNSET

    def resolve(self, value: T) -> None:
        if self.resolved:
            msg = f"{self.description or 'value'} is already resolved"
            raise RuntimeError(msg)

        self._value = value
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(value)

    def get(self) -> T:
        if not self.resolved:
            msg = f"{self.description or 'value'} is not resolved yet"
            raise DependencyNotReadyError(msg)

        return typing.cast(T, self._value)

    def apply(self, fn: typing.Callable[[T], U], description: str | None = None) -> Deferred[U]:
        child: Deferred[U] = Deferred(description or f"{self.description}.apply", self.sources)
        self._subscribe(lambda value: child.resolve(fn(value)))
        return child

    def _subscribe(self, callback: typing.Callable[[T], None]) -> None:
        if self.resolved:
            callback(self._value)
        else:
            self._callbacks.append(callback)


def iter_deferred(value: typing.Any) -> typing.Iterator[Deferred[typing.Any]]:
    if isinstance(value, Deferred):
        yield value
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_deferred(v)
    elif isinstance(value, list | tuple):
        for v in value:
            yield from iter_deferred(v)


def resolve_inputs(value: typing.Any) -> typing.Any:
    if isinstance(value, Deferred):
        return resolve_inputs(value.get())
    if isinstance(value, dict):
        return {k: resolve_inputs(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_inputs(v) for v in value]
    if isinstance(value, tuple):
        return tuple(resolve_inputs(v) for v in value)
    return value


def _encode_for_signature(value: typing.Any) -> str:
    if isinstance(value, Deferred):
        return f"<deferred {value.description} from {','.join(sorted(value.sources))}>"
    # anything else (e.g. provider outputs) only matches itself
    return f"<{type(value).__name__}@{id(value)}>"


@dataclasses.dataclass(eq=False)
class Node:
    kind: NodeKind
    name: str
    inputs: dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    depends_on: tuple[str, ...] = ()

    evaluated: bool = dataclasses.field(default=False, init=False)
    _outputs: dict[str, Deferred[typing.Any]] = dataclasses.field(default_factory=dict, init=False, repr=False)
    _results: dict[str, typing.Any] = dataclasses.field(default_factory=dict, init=False, repr=False)

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.name}"

    def output(self, key: str) -> Deferred[typing.Any]:
        if key not in self._outputs:
            cell: Deferred[typing.Any] = Deferred(f"{self.key}.{key}", {self.key})
            if self.evaluated:
                if key not in self._results:
                    msg = f"{self.key} did not report an output named {key!r}"
                    raise ConfigurationError(msg)
                cell.resolve(self._results[key])
            self._outputs[key] = cell

        return self._outputs[key]

    @property
    def signature(self) -> str:
        """Digest of the declaration; deferred inputs count by description and origin."""
        return hashlib.sha256(
            json.dumps(
                {
                    "kind": str(self.kind),
                    "name": self.name,
                    "inputs": self.inputs,
                    "depends_on": sorted(self.depends_on),
                },
                sort_keys=True,
                default=_encode_for_signature,
            ).encode(),
            usedforsecurity=False,
        ).hexdigest()

    def _resolve(self, results: typing.Mapping[str, typing.Any]) -> None:
        missing = [key for key in self._outputs if key not in results]
        if missing:
            msg = f"transport did not report output {', '.join(repr(k) for k in missing)} for {self.key}"
            raise ProvisioningFailure(msg, self.key)

        # the resource exists from here on, even if a derived cell fails below
        self._results = dict(results)
        self.evaluated = True

        for key, cell in self._outputs.items():
            if not cell.resolved:
                cell.resolve(results[key])


class Transport(typing.Protocol):
    def create(
        self,
        node: Node,
        inputs: dict[str, typing.Any],
        dependencies: list[Node],
    ) -> typing.Mapping[str, typing.Any]: ...


class Graph:
    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __iter__(self) -> typing.Iterator[Node]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, key: str) -> Node:
        return self._nodes[key]

    def nodes_of(self, kind: NodeKind) -> list[Node]:
        return [n for n in self._nodes.values() if n.kind == kind]

    def add(self, node: Node) -> Node:
        """
        Declare `node`. Re-declaring an identical node returns the node already in the
        graph; a different declaration under the same key is a ConfigurationError.
        """
        existing = self._nodes.get(node.key)
        if existing is None:
            self._nodes[node.key] = node
            return node

        if existing.signature != node.signature:
            msg = f"{node.key} is already declared with different inputs"
            raise ConfigurationError(msg)

        pulumi.log.debug(f"{node.key} already declared, reusing it")
        return existing

    def dependencies(self, node: Node) -> list[str]:
        keys = dict.fromkeys(node.depends_on)
        for cell in iter_deferred(node.inputs):
            keys.update(dict.fromkeys(sorted(cell.sources)))

        unknown = [k for k in keys if k not in self._nodes]
        if unknown:
            msg = f"{node.key} depends on undeclared nodes: {', '.join(unknown)}"
            raise ConfigurationError(msg)

        return list(keys)

    def order(self) -> list[Node]:
        deps = {key: self.dependencies(node) for key, node in self._nodes.items()}
        dependents: dict[str, list[str]] = {key: [] for key in self._nodes}
        for key, node_deps in deps.items():
            for dep in node_deps:
                dependents[dep].append(key)

        remaining = {key: len(node_deps) for key, node_deps in deps.items()}
        ready = [key for key in self._nodes if remaining[key] == 0]
        ordered: list[Node] = []

        while ready:
            key = ready.pop(0)
            ordered.append(self._nodes[key])
            for dependent in dependents[key]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)

        if len(ordered) != len(self._nodes):
            cyclic = sorted(key for key, count in remaining.items() if count > 0)
            msg = f"dependency cycle between: {', '.join(cyclic)}"
            raise ConfigurationError(msg)

        return ordered

    def evaluate(self, transport: Transport) -> None:
        """
        Hand every node not yet evaluated to `transport`, dependencies first.

        Failures are not retried. A ProvisioningFailure from the transport propagates
        as is; any other exception, including one raised while resolving the node's
        output cells, is raised as a ProvisioningFailure chained to it. A node whose
        outputs were incomplete is left unevaluated with none of its cells resolved.
        """
        for node in self.order():
            if node.evaluated:
                continue

            dependencies = [self._nodes[k] for k in self.dependencies(node)]

            pulumi.log.debug(f"evaluating {node.key} after [{', '.join(d.key for d in dependencies)}]")
            try:
                inputs = resolve_inputs(node.inputs)
                results = transport.create(node, inputs, dependencies)
                node._resolve(results)
            except ProvisioningFailure:
                raise
            except Exception as e:
                msg = f"failed to provision {node.key}: {e}"
                raise ProvisioningFailure(msg, node.key) from e


class RecordingTransport:
    """
    Transport that records nodes instead of creating resources.

    Inputs are echoed back as outputs with the node name as `id`; IAM roles also report
    an `arn`. A key that was already created is not recorded twice.
    """

    def __init__(self, account_id: str = "000000000000"):
        self.account_id = account_id
        self.created: dict[str, dict[str, typing.Any]] = {}
        self.dependencies: dict[str, list[str]] = {}
        self.order: list[str] = []

    def create(
        self,
        node: Node,
        inputs: dict[str, typing.Any],
        dependencies: list[Node],
    ) -> typing.Mapping[str, typing.Any]:
        if node.key not in self.created:
            missing = [d.key for d in dependencies if d.key not in self.created]
            if missing:
                msg = f"{node.key} submitted before {', '.join(missing)}"
                raise ProvisioningFailure(msg, node.key)

            self.created[node.key] = inputs
            self.dependencies[node.key] = [d.key for d in dependencies]
            self.order.append(node.key)

        outputs = {"id": node.name} | self.created[node.key]
        if node.kind == NodeKind.IAM_ROLE:
            outputs["arn"] = f"arn:aws:iam::{self.account_id}:role/{outputs['name']}"

        return outputs

    def of_kind(self, kind: NodeKind) -> list[str]:
        return [key for key in self.order if key.startswith(f"{kind}/")]
