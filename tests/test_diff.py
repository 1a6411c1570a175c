"""Tests for structural diff."""

import copy

from kube_reconciler import PersistentVolumeSpec, ResourceRequirements, SecretSpec, diff
from kube_reconciler.manifests import to_body


def _observed(body: dict) -> dict:
    """Simulate what the API server returns for a submitted body."""
    observed = copy.deepcopy(body)
    observed["metadata"].update(
        {
            "uid": "1234",
            "resourceVersion": "42",
            "generation": 3,
            "creationTimestamp": "2024-01-01T00:00:00Z",
            "managedFields": [{"manager": "kubectl"}],
        }
    )
    observed["status"] = {"readyReplicas": 1}
    return observed


class TestDiff:
    """Test diff()."""

    def test_identical_after_server_metadata(self, app_deployment):
        body = to_body(app_deployment)
        assert diff(body, _observed(body)) == []

    def test_server_defaults_are_not_drift(self, app_deployment):
        body = to_body(app_deployment)
        observed = _observed(body)
        container = observed["spec"]["template"]["spec"]["containers"][0]
        container["imagePullPolicy"] = "IfNotPresent"
        container["terminationMessagePath"] = "/dev/termination-log"
        observed["spec"]["revisionHistoryLimit"] = 10
        assert diff(body, observed) == []

    def test_changed_image_reported(self, app_deployment):
        observed = _observed(to_body(app_deployment))
        desired = to_body(app_deployment.model_copy(update={"image": "shop/app:2.0"}))
        assert diff(desired, observed) == ["spec.template.spec.containers[0].image"]

    def test_changed_replicas_reported(self, app_deployment):
        observed = _observed(to_body(app_deployment))
        desired = to_body(app_deployment.model_copy(update={"replicas": 5}))
        assert diff(desired, observed) == ["spec.replicas"]

    def test_extra_observed_labels_ignored(self, db_config):
        body = to_body(db_config)
        observed = _observed(body)
        observed["metadata"]["labels"]["team"] = "payments"
        assert diff(body, observed) == []

    def test_added_config_key_reported(self, db_config):
        observed = _observed(to_body(db_config))
        desired = to_body(
            db_config.model_copy(update={"data": {**db_config.data, "port": "3306"}})
        )
        assert diff(desired, observed) == ["data.port"]

    def test_removed_config_key_reported(self, db_config):
        observed = _observed(to_body(db_config))
        desired = to_body(db_config.model_copy(update={"data": {"host": "mysql"}}))
        assert diff(desired, observed) == ["data.dbName"]

    def test_secret_change_reports_key_only(self, mysql_secrets):
        observed = _observed(to_body(mysql_secrets))
        changed = SecretSpec(
            name="mysql-secrets",
            string_data={"username": "root", "password": "rotated-value"},
        )
        changes = diff(to_body(changed), observed)
        assert changes == ["data.password"]
        assert not any("rotated-value" in c or "s3cr3t-value" in c for c in changes)

    def test_list_length_change(self, app_deployment):
        observed = _observed(to_body(app_deployment))
        desired = to_body(app_deployment.model_copy(update={"ports": [8080, 9090]}))
        assert diff(desired, observed) == ["spec.template.spec.containers[0].ports"]

    def test_canonical_quantities_are_not_drift(self, app_deployment):
        """The server returns quantities in canonical form."""
        resources = ResourceRequirements(
            limits={"cpu": "0.5", "memory": "1Gi"}, requests={"cpu": 1}
        )
        body = to_body(app_deployment.model_copy(update={"resources": resources}))
        observed = _observed(body)
        container = observed["spec"]["template"]["spec"]["containers"][0]
        container["resources"] = {
            "limits": {"cpu": "500m", "memory": "1Gi"},
            "requests": {"cpu": "1"},
        }
        assert diff(body, observed) == []

    def test_changed_quantity_reported(self, app_deployment):
        resources = ResourceRequirements(limits={"cpu": "500m"})
        observed = _observed(
            to_body(app_deployment.model_copy(update={"resources": resources}))
        )
        desired = to_body(
            app_deployment.model_copy(
                update={"resources": ResourceRequirements(limits={"cpu": "2"})}
            )
        )
        assert diff(desired, observed) == [
            "spec.template.spec.containers[0].resources.limits.cpu"
        ]

    def test_volume_capacity_compared_by_value(self):
        body = to_body(PersistentVolumeSpec(name="mysql-pv", capacity="1024Mi"))
        observed = _observed(body)
        observed["spec"]["capacity"]["storage"] = "1Gi"
        assert diff(body, observed) == []
