from __future__ import annotations

import pulumi
import pulumi_aws as aws


def define_bucket(
    name: str,
    required_tags: dict[str, str] | None = None,
    force_destroy: bool = False,
    opts: pulumi.ResourceOptions | None = None,
) -> aws.s3.Bucket:
    """
    Define a private bucket. ACLs are disabled (bucket owner enforced) and all public
    access is blocked; workloads reach the bucket through IRSA-bound roles only.
    """
    if required_tags is None:
        required_tags = {}

    if opts is None:
        opts = pulumi.ResourceOptions()

    bucket = aws.s3.Bucket(
        name,
        aws.s3.BucketArgs(
            bucket=name,
            force_destroy=force_destroy,
            tags=required_tags | {"Name": name},
        ),
        opts=opts,
    )

    aws.s3.BucketOwnershipControls(
        f"{name}-ownership",
        bucket=bucket.id,
        rule=aws.s3.BucketOwnershipControlsRuleArgs(
            object_ownership="BucketOwnerEnforced",
        ),
        opts=pulumi.ResourceOptions(parent=bucket),
    )

    aws.s3.BucketPublicAccessBlock(
        f"{name}-public-access-block",
        bucket=bucket.id,
        block_public_acls=True,
        block_public_policy=True,
        ignore_public_acls=True,
        restrict_public_buckets=True,
        opts=pulumi.ResourceOptions(parent=bucket),
    )

    return bucket


def bucket_uri(bucket: aws.s3.Bucket) -> pulumi.Output[str]:
    return bucket.bucket.apply(lambda name: f"s3://{name}")
