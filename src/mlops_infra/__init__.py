from __future__ import annotations

import enum
import re

DEFAULT_NAMESPACE = "default"
MLFLOW_NAMESPACE = "mlflow"
TRAEFIK_NAMESPACE = "traefik"

IRSA_ROLE_ARN_ANNOTATION = "eks.amazonaws.com/role-arn"
STS_AUDIENCE = "sts.amazonaws.com"

# IAM role names are limited to 64 characters
IAM_ROLE_NAME_MAX_LENGTH = 64

DNS_LABEL_REGEX = re.compile("^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
DNS_LABEL_MAX_LENGTH = 63


class ConfigurationError(ValueError):
    """A prerequisite is missing or the declared graph is inconsistent."""


class ValidationError(ValueError):
    """An input value is malformed."""


class ProvisioningFailure(RuntimeError):
    """The provisioning transport failed to create a resource."""

    def __init__(self, msg: str, node_key: str | None = None):
        super().__init__(msg)
        self.node_key = node_key


class DependencyNotReadyError(RuntimeError):
    """A deferred value was read before the node producing it was evaluated."""


class NodeKind(enum.StrEnum):
    HELM_RELEASE = "helm-release"
    IAM_ROLE = "iam-role"
    IAM_ROLE_POLICY = "iam-role-policy"
    NAMESPACE = "namespace"
    SERVICE = "service"
    SERVICE_ACCOUNT = "service-account"
    TRAEFIK_INGRESS_ROUTE = "traefik-ingress-route"
    TRAEFIK_MIDDLEWARE = "traefik-middleware"


class TagKeys(enum.StrEnum):
    MLOPS_ENVIRONMENT = "mlops/environment"
    MLOPS_MANAGED_BY = "mlops/managed-by"
    MLOPS_TRUE_NAME = "mlops/true-name"


class Environments(enum.StrEnum):
    development = "development"
    staging = "staging"
    production = "production"


def dns_label(name: str) -> str:
    """Normalise `name` into a Kubernetes DNS-1123 label.

    Lowercases, maps runs of characters outside ``[a-z0-9-]`` to ``-`` and trims
    leading/trailing dashes. Raises ValidationError if nothing usable is left or
    the result exceeds 63 characters.
    """
    label = re.sub("[^a-z0-9-]+", "-", name.lower()).strip("-")
    if not label or len(label) > DNS_LABEL_MAX_LENGTH or DNS_LABEL_REGEX.match(label) is None:
        msg = f"{name!r} cannot be used as a Kubernetes object name"
        raise ValidationError(msg)

    return label
