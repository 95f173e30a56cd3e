import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s
import pulumi_random

import mlops_infra
import mlops_infra.oidc
import mlops_infra.platform
import mlops_infra.pulumi_resources.aws_bucket
import mlops_infra.pulumi_resources.eks
import mlops_infra.pulumi_resources.mlflow
import mlops_infra.pulumi_resources.traefik
import mlops_infra.routes
import mlops_infra.service_accounts
from mlops_infra import NodeKind
from mlops_infra.aws_iam import AccessLevel
from mlops_infra.graph import Graph, Node
from mlops_infra.pulumi_resources.transport import PulumiTransport


class MLOpsPlatform(pulumi.ComponentResource):
    platform: mlops_infra.platform.Platform

    required_tags: dict[str, str]
    identity_provider: mlops_infra.oidc.FederatedIdentityProvider | None
    cluster: aws.eks.GetClusterResult
    kubeconfig: str
    kube_provider: k8s.Provider

    graph: Graph
    transport: PulumiTransport

    buckets: dict[str, aws.s3.Bucket]
    db_subnet_group: aws.rds.SubnetGroup
    db: aws.rds.Instance
    db_password: pulumi_random.RandomPassword
    traefik: Node
    mlflow_release: Node
    mlflow_service: Node
    bindings: dict[str, mlops_infra.service_accounts.AccessBinding]
    routes: dict[str, mlops_infra.routes.RouteRule]

    @classmethod
    def autoload(cls) -> "MLOpsPlatform":
        return cls(platform=mlops_infra.platform.Platform(pulumi.get_stack()))

    def __init__(
        self,
        platform: mlops_infra.platform.Platform,
        identity_provider: mlops_infra.oidc.FederatedIdentityProvider | None = None,
        kube_provider: k8s.Provider | None = None,
        *args,
        **kwargs,
    ):
        super().__init__(
            f"mlops:{self.__class__.__name__}",
            platform.compound_name,
            *args,
            **kwargs,
        )

        self.platform = platform
        self.required_tags = self.platform.required_tags | {
            str(mlops_infra.TagKeys.MLOPS_MANAGED_BY): __name__,
        }
        self.identity_provider = identity_provider or self._lookup_identity_provider()
        self.cluster = aws.eks.get_cluster(name=self.platform.cfg.cluster_name)
        self.kubeconfig = mlops_infra.pulumi_resources.eks.cluster_kubeconfig(
            self.cluster, region=self.platform.cfg.region
        )
        self.kube_provider = kube_provider or mlops_infra.pulumi_resources.eks.get_provider_for_cluster(
            self.platform.cfg.cluster_name, self.kubeconfig
        )

        self.graph = Graph()
        self.transport = PulumiTransport(
            parent=self,
            kube_provider=self.kube_provider,
            required_tags=self.required_tags,
        )
        self.bindings = {}
        self.routes = {}

        self._define_buckets()
        self._define_database()
        self._define_traefik()
        self._define_mlflow()
        self._define_service_accounts()

        self.graph.evaluate(self.transport)

        outputs = {
            "mlflow_tracking_uri": self.platform.cfg.mlflow_tracking_uri,
            "mlflow_bucket_uri": mlops_infra.pulumi_resources.aws_bucket.bucket_uri(
                self.buckets[mlops_infra.platform.MLFLOW_BUCKET]
            ),
            "dvc_bucket_uri": mlops_infra.pulumi_resources.aws_bucket.bucket_uri(
                self.buckets[mlops_infra.platform.DVC_BUCKET]
            ),
            "kubeconfig": pulumi.Output.secret(self.kubeconfig),
        }
        for name, binding in self.bindings.items():
            outputs[f"{name}_service_account_name"] = binding.service_account_name

        for key, value in outputs.items():
            pulumi.export(key, value)

        self.register_outputs(outputs)

    def _lookup_identity_provider(self) -> mlops_infra.oidc.FederatedIdentityProvider | None:
        cfg = self.platform.cfg
        provider, ok = mlops_infra.oidc.aws_eks_cluster_identity_provider(
            cfg.cluster_name,
            account_id=cfg.account_id,
            region=cfg.region,
        )
        if not ok:
            msg = f"Failed to look up the OIDC issuer of cluster {cfg.cluster_name!r}"
            pulumi.error(msg, self)

            raise mlops_infra.ConfigurationError(msg)

        return provider

    def _namespace(self, name: str) -> Node:
        return self.graph.add(Node(NodeKind.NAMESPACE, name, {"name": name}))

    def _define_buckets(self):
        self.buckets = {
            bucket: mlops_infra.pulumi_resources.aws_bucket.define_bucket(
                self.platform.bucket_name(bucket),
                required_tags=self.required_tags,
                opts=pulumi.ResourceOptions(parent=self),
            )
            for bucket in mlops_infra.platform.BUCKETS
        }

    def _define_database(self):
        db_cfg = self.platform.cfg.database
        name = f"{self.platform.compound_name}-mlflow"

        self.db_password = pulumi_random.RandomPassword(
            f"{name}-db-pw",
            length=16,
            special=False,
            opts=pulumi.ResourceOptions(parent=self),
        )

        vpc_config = self.cluster.vpc_config
        self.db_subnet_group = aws.rds.SubnetGroup(
            f"{name}-db-subnet-group",
            subnet_ids=vpc_config.subnet_ids,
            tags=self.required_tags | {"Name": f"{name}-db-subnet-group"},
            opts=pulumi.ResourceOptions(parent=self),
        )

        # the cluster security group admits traffic from every node and pod in the cluster
        security_group_ids = db_cfg.security_group_ids or [vpc_config.cluster_security_group_id]

        self.db = aws.rds.Instance(
            f"{name}-db",
            aws.rds.InstanceArgs(
                allocated_storage=db_cfg.allocated_storage,
                engine="postgres",
                engine_version=db_cfg.engine_version,
                instance_class=db_cfg.instance_class,
                db_name=db_cfg.name,
                username=db_cfg.username,
                password=self.db_password.result,
                skip_final_snapshot=True,
                db_subnet_group_name=self.db_subnet_group.name,
                vpc_security_group_ids=security_group_ids,
                tags=self.required_tags,
            ),
            opts=pulumi.ResourceOptions(parent=self),
        )

    def _define_traefik(self):
        traefik_cfg = self.platform.cfg.traefik
        self.traefik = mlops_infra.pulumi_resources.traefik.define_traefik(
            self.graph,
            traefik_cfg,
            lb_tags=self.platform.required_tags | {"Name": self.platform.compound_name},
            depends_on=[self._namespace(traefik_cfg.namespace)],
        )

    def _define_mlflow(self):
        mlflow_cfg = self.platform.cfg.mlflow
        db_cfg = self.platform.cfg.database
        namespace = self._namespace(mlflow_cfg.namespace)
        bucket = self.buckets[mlops_infra.platform.MLFLOW_BUCKET]

        binding = mlops_infra.service_accounts.bind(
            self.graph,
            name=mlflow_cfg.service_account,
            namespace=mlflow_cfg.namespace,
            provider=self.identity_provider,
            access_level=AccessLevel.READ_WRITE,
            bucket_arns=[bucket.arn],
            depends_on=[namespace],
            tags=self.required_tags,
        )
        self.bindings[mlops_infra.platform.MLFLOW_BINDING] = binding

        values = mlops_infra.pulumi_resources.mlflow.build_mlflow_helm_values(
            db_host=self.db.address,
            db_port=self.db.port,
            db_name=db_cfg.name,
            db_username=self.db.username,
            db_password=self.db_password.result,
            artifact_root=mlops_infra.pulumi_resources.aws_bucket.bucket_uri(bucket),
            service_account_name=binding.service_account_name,
        )
        self.mlflow_release, self.mlflow_service = mlops_infra.pulumi_resources.mlflow.define_mlflow(
            self.graph,
            mlflow_cfg,
            values,
            depends_on=[binding.service_account],
        )

        self.routes["mlflow"] = mlops_infra.routes.register(
            self.graph,
            name="mlflow",
            prefix=mlflow_cfg.route_prefix,
            namespace=mlflow_cfg.namespace,
            service=mlops_infra.routes.ServiceRef.from_node(self.mlflow_service),
            depends_on=[self.traefik],
        )

    def _define_service_accounts(self):
        for sa_cfg in self.platform.cfg.service_accounts:
            depends_on = []
            if sa_cfg.namespace != mlops_infra.DEFAULT_NAMESPACE:
                depends_on.append(self._namespace(sa_cfg.namespace))

            self.bindings[sa_cfg.name] = mlops_infra.service_accounts.bind(
                self.graph,
                name=sa_cfg.name,
                namespace=sa_cfg.namespace,
                provider=self.identity_provider,
                access_level=sa_cfg.access_level,
                bucket_arns=[self.buckets[b].arn for b in sa_cfg.buckets],
                depends_on=depends_on,
                tags=self.required_tags,
            )
