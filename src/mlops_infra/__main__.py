import mlops_infra.pulumi_resources.mlops_platform

mlops_infra.pulumi_resources.mlops_platform.MLOpsPlatform.autoload()
