from __future__ import annotations

import enum
import typing
import weakref

import pulumi

import mlops_infra
import mlops_infra.graph

if typing.TYPE_CHECKING:
    import mlops_infra.oidc


class AccessLevel(enum.StrEnum):
    READ_ONLY = "read-only"
    READ_WRITE = "read-write"


_READ_ACTIONS = frozenset(
    {
        "s3:GetBucketLocation",
        "s3:GetObject",
        "s3:GetObjectTagging",
        "s3:ListBucket",
    }
)

MUTATING_ACTIONS = frozenset(
    {
        "s3:AbortMultipartUpload",
        "s3:DeleteObject",
        "s3:PutObject",
        "s3:PutObjectTagging",
    }
)

# actions evaluated against the bucket ARN itself rather than its objects
BUCKET_LEVEL_ACTIONS = frozenset(
    {
        "s3:GetBucketLocation",
        "s3:ListBucket",
    }
)

ACCESS_LEVEL_ACTIONS: typing.Mapping[AccessLevel, frozenset[str]] = {
    AccessLevel.READ_ONLY: _READ_ACTIONS,
    AccessLevel.READ_WRITE: _READ_ACTIONS | MUTATING_ACTIONS,
}


def access_level(value: AccessLevel | str) -> AccessLevel:
    try:
        return AccessLevel(value)
    except ValueError:
        msg = f"unknown access level {value!r}, expected one of {', '.join(AccessLevel)}"
        raise mlops_infra.ValidationError(msg) from None


def build_bucket_access_policy(
    level: AccessLevel | str,
    bucket_arns: typing.Sequence[typing.Any],
) -> dict[str, typing.Any]:
    """
    Build the S3 policy document granting `level` on `bucket_arns`.

    The ARNs may be deferred values; they are placed in the document as they are and
    resolved when the document is submitted.
    """
    if len(bucket_arns) == 0:
        msg = "at least one bucket is required to build an access policy"
        raise mlops_infra.ValidationError(msg)

    actions = ACCESS_LEVEL_ACTIONS[access_level(level)]
    bucket_actions = sorted(actions & BUCKET_LEVEL_ACTIONS)
    object_actions = sorted(actions - BUCKET_LEVEL_ACTIONS)

    object_resources = [_object_arn(arn) for arn in bucket_arns]

    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "Buckets",
                "Effect": "Allow",
                "Action": bucket_actions,
                "Resource": list(bucket_arns),
            },
            {
                "Sid": "Objects",
                "Effect": "Allow",
                "Action": object_actions,
                "Resource": object_resources,
            },
        ],
    }


# one derived output per bucket ARN output, so identical policies stay identical
_OBJECT_ARN_OUTPUTS: weakref.WeakKeyDictionary[pulumi.Output, pulumi.Output] = weakref.WeakKeyDictionary()


def _object_arn(bucket_arn: typing.Any) -> typing.Any:
    if isinstance(bucket_arn, mlops_infra.graph.Deferred):
        return bucket_arn.apply(lambda arn: f"{arn}/*", f"{bucket_arn.description}/*")
    if isinstance(bucket_arn, pulumi.Output):
        if bucket_arn not in _OBJECT_ARN_OUTPUTS:
            _OBJECT_ARN_OUTPUTS[bucket_arn] = bucket_arn.apply(lambda arn: f"{arn}/*")
        return _OBJECT_ARN_OUTPUTS[bucket_arn]
    return f"{bucket_arn}/*"


def service_account_subject(namespace: str, service_account: str) -> str:
    return f"system:serviceaccount:{namespace}:{service_account}"


def build_irsa_role_assume_role_policy(
    provider: mlops_infra.oidc.FederatedIdentityProvider,
    namespace: str,
    service_accounts: list[str],
) -> dict[str, typing.Any]:
    """
    Trust policy letting exactly `service_accounts` in `namespace` assume the role
    with tokens issued by `provider`.
    """
    if len(service_accounts) == 0:
        msg = "an IRSA trust policy needs at least one service account"
        raise mlops_infra.ValidationError(msg)

    oidc_url_tail = provider.url_tail
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Action": "sts:AssumeRoleWithWebIdentity",
                "Effect": "Allow",
                "Principal": {
                    "Federated": provider.arn,
                },
                "Condition": {
                    "StringEquals": {
                        f"{oidc_url_tail}:aud": provider.audience,
                        f"{oidc_url_tail}:sub": [
                            service_account_subject(namespace, account) for account in service_accounts
                        ],
                    },
                },
            }
        ],
    }


def granted_actions(policy: dict[str, typing.Any]) -> set[str]:
    actions: set[str] = set()
    for statement in policy.get("Statement", []):
        if statement.get("Effect") != "Allow":
            continue
        action = statement.get("Action", [])
        actions.update([action] if isinstance(action, str) else action)

    return actions


def trusted_subjects(trust_policy: dict[str, typing.Any]) -> set[str]:
    """Collect every `sub` claim a trust policy accepts, from any condition operator."""
    subjects: set[str] = set()
    for statement in trust_policy.get("Statement", []):
        for operator in statement.get("Condition", {}).values():
            for key, value in operator.items():
                if not key.endswith(":sub"):
                    continue
                subjects.update([value] if isinstance(value, str) else value)

    return subjects
