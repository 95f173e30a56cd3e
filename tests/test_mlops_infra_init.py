import pytest

import mlops_infra


class TestMLOpsInfraInit:
    def test_node_kind_values(self):
        assert mlops_infra.NodeKind.SERVICE_ACCOUNT == "service-account"
        assert f"{mlops_infra.NodeKind.TRAEFIK_INGRESS_ROUTE}/ns/x" == "traefik-ingress-route/ns/x"

    def test_environments(self):
        assert "staging" in mlops_infra.Environments
        assert "qa" not in mlops_infra.Environments

    def test_error_taxonomy(self):
        assert issubclass(mlops_infra.ConfigurationError, ValueError)
        assert issubclass(mlops_infra.ValidationError, ValueError)
        assert not issubclass(mlops_infra.ConfigurationError, mlops_infra.ValidationError)
        assert mlops_infra.ProvisioningFailure("boom", "iam-role/x").node_key == "iam-role/x"

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("models", "models"),
            ("Model Serving", "model-serving"),
            ("--team_a--", "team-a"),
            ("a.b", "a-b"),
        ],
    )
    def test_dns_label(self, name, expected):
        assert mlops_infra.dns_label(name) == expected

    @pytest.mark.parametrize("name", ["", "---", "x" * 64])
    def test_dns_label_rejects(self, name):
        with pytest.raises(mlops_infra.ValidationError):
            mlops_infra.dns_label(name)
