"""
Federated identity (OIDC) provider handles for EKS clusters.

Workloads in a cluster assume IAM roles with tokens issued by the cluster's OIDC
issuer (IRSA). The provider handle is looked up once per cluster and passed
explicitly to every binding.
"""

from __future__ import annotations

import dataclasses

import boto3
import pulumi

import mlops_infra


@dataclasses.dataclass(frozen=True)
class FederatedIdentityProvider:
    url: str
    arn: str
    cluster_name: str = ""
    audience: str = mlops_infra.STS_AUDIENCE
    thumbprints: tuple[str, ...] = ()

    @property
    def url_tail(self) -> str:
        """The issuer without its scheme, as IAM condition keys expect it."""
        return clean_issuer(self.url)

    @classmethod
    def from_issuer(cls, issuer: str, account_id: str, cluster_name: str = "") -> FederatedIdentityProvider:
        if not issuer.startswith("https://"):
            msg = f"OIDC issuer must be an https URL, got {issuer!r}"
            raise mlops_infra.ValidationError(msg)

        return cls(
            url=issuer,
            arn=f"arn:aws:iam::{account_id}:oidc-provider/{clean_issuer(issuer)}",
            cluster_name=cluster_name,
        )


def clean_issuer(url: str) -> str:
    return url.replace("https://", "").rstrip("/")


def require_provider(provider: FederatedIdentityProvider | None) -> FederatedIdentityProvider:
    if provider is None:
        msg = "no federated identity provider: the cluster must be provisioned with an OIDC provider enabled"
        raise mlops_infra.ConfigurationError(msg)

    return provider


def aws_eks_cluster_identity_provider(
    cluster_name: str,
    account_id: str,
    exe_env: dict[str, str] | None = None,
    region: str = "us-east-2",
) -> tuple[FederatedIdentityProvider | None, bool]:
    """
    Look up the OIDC issuer of an EKS cluster.

    :return: the provider (None when the cluster has no issuer) and whether the lookup
        itself succeeded
    """
    session = boto3.Session(
        aws_access_key_id=exe_env.get("AWS_ACCESS_KEY_ID") if exe_env else None,
        aws_secret_access_key=exe_env.get("AWS_SECRET_ACCESS_KEY") if exe_env else None,
        aws_session_token=exe_env.get("AWS_SESSION_TOKEN") if exe_env else None,
        region_name=region,
    )
    eks_client = session.client("eks")

    try:
        response = eks_client.describe_cluster(name=cluster_name)
    except Exception as e:
        pulumi.log.warn(f"Could not describe EKS cluster {cluster_name}: {e}")
        return None, False

    issuer = response.get("cluster", {}).get("identity", {}).get("oidc", {}).get("issuer", "")
    if issuer.strip() == "":
        return None, True

    return FederatedIdentityProvider.from_issuer(issuer, account_id, cluster_name), True
