"""Tests for desired-vs-live comparison."""

from __future__ import annotations

import base64

from kubestage.engine.compare import desired_state, diff_paths, is_subset

from ..fakes import deployment, secret, specs


class TestDesiredState:
    def test_strips_server_owned_fields(self) -> None:
        doc = deployment("web")
        doc["status"] = {"replicas": 3}
        doc["metadata"]["uid"] = "abc"
        (spec,) = specs(doc)

        desired = desired_state(spec)

        assert "status" not in desired
        assert "apiVersion" not in desired
        assert desired["metadata"] == {"name": "web", "namespace": "default"}

    def test_secret_string_data_is_folded_into_data(self) -> None:
        (spec,) = specs(secret("db", password="hunter2"))

        desired = desired_state(spec)

        assert "stringData" not in desired
        assert desired["data"] == {"password": base64.b64encode(b"hunter2").decode()}

    def test_result_does_not_alias_the_loaded_payload(self) -> None:
        (spec,) = specs(deployment("web"))

        desired = desired_state(spec)
        desired["spec"]["template"]["spec"]["containers"][0]["image"] = "changed"
        desired["metadata"]["name"] = "changed"

        assert spec.payload["spec"]["template"]["spec"]["containers"][0]["image"] == "example/web:1.0"
        assert spec.name == "web"


class TestDiffPaths:
    def test_server_added_fields_are_not_a_difference(self) -> None:
        desired = {"spec": {"replicas": 1}}
        live = {"spec": {"replicas": 1, "revisionHistoryLimit": 10}, "status": {}}
        assert diff_paths(desired, live) == []
        assert is_subset(desired, live)

    def test_changed_scalar_is_reported_with_its_path(self) -> None:
        desired = {"spec": {"template": {"spec": {"containers": [{"image": "web:2"}]}}}}
        live = {"spec": {"template": {"spec": {"containers": [{"image": "web:1", "name": "web"}]}}}}
        assert diff_paths(desired, live) == ["spec.template.spec.containers[0].image"]

    def test_list_length_mismatch(self) -> None:
        assert diff_paths({"ports": [{"port": 80}]}, {"ports": [{"port": 80}, {"port": 443}]}) == ["ports"]

    def test_missing_key(self) -> None:
        assert diff_paths({"data": {"a": "1", "b": "2"}}, {"data": {"a": "1"}}) == ["data.b"]

    def test_empty_desired_values_may_be_absent(self) -> None:
        assert diff_paths({"metadata": {"labels": {}}, "data": None}, {"metadata": {}}) == []

    def test_numeric_strings_match_numbers(self) -> None:
        assert diff_paths({"port": "80"}, {"port": 80}) == []
        assert diff_paths({"enabled": True}, {"enabled": "True"}) == ["enabled"]

    def test_limit(self) -> None:
        desired = {f"k{i}": i for i in range(10)}
        assert len(diff_paths(desired, {}, limit=3)) == 3

    def test_identical_stored_secret_matches(self) -> None:
        (spec,) = specs(secret("db"))
        live = {
            "kind": "Secret",
            "metadata": {"name": "db", "namespace": "default", "uid": "x", "resourceVersion": "7"},
            "type": "Opaque",
            "data": {"password": base64.b64encode(b"s3cret").decode()},
        }
        assert diff_paths(desired_state(spec), live) == []


class TestQuantities:
    def test_canonical_forms_match_declared_forms(self) -> None:
        desired = {"resources": {"requests": {"cpu": 0.5, "memory": "1024Mi"}, "limits": {"cpu": 0.1, "memory": "1G"}}}
        live = {"resources": {"requests": {"cpu": "500m", "memory": "1Gi"}, "limits": {"cpu": "100m", "memory": "1000M"}}}
        assert diff_paths(desired, live) == []

    def test_volume_capacity_and_size_limit(self) -> None:
        desired = {"capacity": {"storage": "2048Mi"}, "emptyDir": {"sizeLimit": "0.5Gi"}}
        live = {"capacity": {"storage": "2Gi"}, "emptyDir": {"sizeLimit": "512Mi"}}
        assert diff_paths(desired, live) == []

    def test_different_quantities_still_differ(self) -> None:
        desired = {"resources": {"requests": {"cpu": "1", "memory": "1Gi"}}}
        live = {"resources": {"requests": {"cpu": "2", "memory": "1G"}}}
        assert diff_paths(desired, live) == ["resources.requests.cpu", "resources.requests.memory"]

    def test_quantity_syntax_is_ignored_outside_resource_fields(self) -> None:
        assert diff_paths({"data": {"size": "1k"}}, {"data": {"size": "1000"}}) == ["data.size"]

    def test_redeclared_resources_are_identical_to_the_stored_object(self) -> None:
        doc = deployment("web")
        doc["spec"]["template"]["spec"]["containers"][0]["resources"] = {"requests": {"cpu": 0.5, "memory": "1024Mi"}}
        (spec,) = specs(doc)
        live = desired_state(spec)
        live["spec"]["template"]["spec"]["containers"][0]["resources"] = {"requests": {"cpu": "500m", "memory": "1Gi"}}

        assert diff_paths(desired_state(spec), live) == []
