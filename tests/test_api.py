"""HTTP tests for the feed manager API"""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FEED_ROOT, catalog_leaf, paged_search, registration_index, search_hit
from feed_manager.core import dependencies
from feed_manager.data.selection import SelectionState
from feed_manager.data.settings import SettingsStore
from feed_manager.domain.models import CommandResult, Package
from feed_manager.main import app
from feed_manager.services.commands import CommandRunner
from feed_manager.services.discovery import FeedDiscoveryResolver
from feed_manager.services.lifecycle import LifecycleOperations
from feed_manager.services.search import PackageSearchPaginator
from feed_manager.services.versions import VersionAggregator


@pytest.fixture
def settings_store(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    store.update(feed_url=FEED_ROOT, api_key="secret-key")
    return store


@pytest.fixture
def runner():
    runner = CommandRunner(executable="dotnet")
    runner.run = AsyncMock(return_value=CommandResult(args=["dotnet", "pack"], exit_code=0, stdout="packed"))
    return runner


@pytest.fixture
def session(feed):
    return dependencies.FeedSession(resolver=FeedDiscoveryResolver(transport=feed.transport))


@pytest.fixture
def client(feed, settings_store, session, runner, no_sleep):
    aggregator = VersionAggregator(transport=feed.transport)
    paginator = PackageSearchPaginator(transport=feed.transport, sleep=no_sleep, version_aggregator=aggregator)
    lifecycle = LifecycleOperations(transport=feed.transport)
    selection = SelectionState()

    app.dependency_overrides.update({
        dependencies.get_settings_store: lambda: settings_store,
        dependencies.get_session: lambda: session,
        dependencies.get_version_aggregator: lambda: aggregator,
        dependencies.get_paginator: lambda: paginator,
        dependencies.get_lifecycle: lambda: lifecycle,
        dependencies.get_selection: lambda: selection,
        dependencies.get_command_runner: lambda: runner,
    })
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestSettings:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_api_key_not_returned(self, client):
        body = client.get("/api/settings").json()
        assert body == {"feed_url": FEED_ROOT, "has_api_key": True}

    def test_changing_feed_clears_session(self, client, session):
        session.packages = [Package(id="A")]
        response = client.put("/api/settings", json={"feed_url": "https://other.test", "api_key": ""})

        assert response.json() == {"feed_url": "https://other.test", "has_api_key": False}
        assert session.packages == []

    def test_partial_update_keeps_other_field(self, client, settings_store, session):
        session.packages = [Package(id="A")]

        body = client.put("/api/settings", json={"api_key": "new-key"}).json()

        assert body == {"feed_url": FEED_ROOT, "has_api_key": True}
        assert settings_store.settings.api_key == "new-key"
        # same feed, so the loaded packages stay
        assert [p.id for p in session.packages] == ["A"]

        body = client.put("/api/settings", json={"feed_url": "https://other.test"}).json()
        assert body == {"feed_url": "https://other.test", "has_api_key": True}
        assert settings_store.settings.api_key == "new-key"

    def test_explicit_null_clears_field(self, client, settings_store):
        body = client.put("/api/settings", json={"api_key": None}).json()
        assert body == {"feed_url": FEED_ROOT, "has_api_key": False}

    def test_unconfigured_feed(self, client, settings_store):
        settings_store.update(feed_url=None)
        response = client.get("/api/packages")

        assert response.status_code == 400
        assert response.json()["error"] == "ConfigurationError"


class TestBrowsing:
    def test_search(self, client, feed):
        feed.on("GET", "/query", paged_search([search_hit("A", ["1.0.0", "2.0.0"]), search_hit("B", ["0.1.0"])]))

        response = client.get("/api/packages", params={"q": "lib", "count": 10})

        assert response.status_code == 200
        body = response.json()
        assert [p["id"] for p in body["packages"]] == ["A", "B"]
        assert [v["version"] for v in body["packages"][0]["versions"]] == ["2.0.0", "1.0.0"]
        assert body["packages"][0]["versions"][0]["selected"] is False
        assert body["pages_requested"] == 1

    def test_endpoints_resolved_once(self, client, feed):
        feed.on("GET", "/query", paged_search([]))
        client.get("/api/packages")
        client.get("/api/packages")
        assert len(feed.requests_to("/v3/index.json")) == 1

    def test_load_all_expands_versions(self, client, feed):
        feed.on("GET", "/query", paged_search([search_hit("A", ["1.0.0"])]))
        feed.json("/registration/a/index.json", registration_index(catalog_leaf("1.0.0"), catalog_leaf("0.5.0")))

        body = client.get("/api/packages/all").json()

        assert [v["version"] for v in body["packages"][0]["versions"]] == ["1.0.0", "0.5.0"]
        assert feed.requests_to("/query")[0].url.params["take"] == "100"

    def test_search_failure(self, client, feed):
        feed.on("GET", "/query", httpx.Response(500))
        response = client.get("/api/packages")

        assert response.status_code == 502
        assert response.json()["error"] == "FeedTransportError"
        assert response.json()["details"]["http_status"] == 500

    def test_unreachable_feed(self, client, feed):
        feed.on("GET", "/v3/index.json", httpx.Response(503))
        response = client.get("/api/packages")

        assert response.status_code == 502
        assert response.json()["error"] == "DiscoveryUnreachableError"

    def test_package_versions(self, client, feed):
        feed.json("/registration/a/index.json", registration_index(catalog_leaf("1.0.0"), catalog_leaf("2.0.0-rc")))

        body = client.get("/api/packages/A/versions", params={"prerelease": "false"}).json()

        assert body["id"] == "A"
        assert [v["version"] for v in body["versions"]] == ["1.0.0"]


class TestDeletion:
    @pytest.fixture(autouse=True)
    def loaded(self, client, feed):
        feed.on("GET", "/query", paged_search([search_hit("A", ["1.0.0"]), search_hit("B", ["1.0.0", "2.0.0"])]))
        client.get("/api/packages")

    def test_select_and_delete_selected(self, client, feed, session):
        feed.on("DELETE", "/api/v2/package/A/1.0.0", httpx.Response(204))
        feed.on("DELETE", "/api/v2/package/B/2.0.0", httpx.Response(204))
        client.post("/api/packages/A/versions/1.0.0/select")
        client.post("/api/packages/B/versions/2.0.0/select")

        assert client.post("/api/packages/delete-selected", json={}).status_code == 400

        body = client.post("/api/packages/delete-selected", json={"confirm": True}).json()

        assert [(d["package_id"], d["package_removed"]) for d in body["deleted"]] == [("A", True), ("B", False)]
        assert body["failed"] == []
        assert [p.id for p in session.packages] == ["B"]
        assert [v.version for v in session.packages[0].versions] == ["1.0.0"]
        # selection cleared for deleted versions
        assert client.post("/api/packages/delete-selected", json={"confirm": True}).status_code == 400

    def test_deselect(self, client):
        client.post("/api/packages/A/versions/1.0.0/select")
        response = client.delete("/api/packages/A/versions/1.0.0/select")
        assert response.json()["selected"] is False
        assert client.post("/api/packages/delete-selected", json={"confirm": True}).status_code == 400

    def test_failed_deletions_reported(self, client, feed):
        client.post("/api/packages/A/versions/1.0.0/select")
        body = client.post("/api/packages/delete-selected", json={"confirm": True}).json()

        assert body["deleted"] == []
        assert body["failed"][0]["error"] == "DeleteNotFoundError"

    def test_delete_requires_confirmation(self, client, feed):
        assert client.delete("/api/packages/A/versions/1.0.0").status_code == 400
        assert feed.requests_to("/api/v2/package/A/1.0.0") == []

    def test_delete_single_version(self, client, feed, session):
        feed.on("DELETE", "/api/v2/package/B/1.0.0", httpx.Response(200))
        response = client.delete("/api/packages/B/versions/1.0.0", params={"confirm": "true"})

        assert response.status_code == 200
        assert response.json()["version"] == "1.0.0"
        assert [v.version for v in session.find_package("b").versions] == ["2.0.0"]

    def test_delete_missing_version(self, client):
        response = client.delete("/api/packages/A/versions/9.0.0", params={"confirm": "true"})
        assert response.status_code == 404
        assert response.json()["error"] == "DeleteNotFoundError"

    def test_invalid_version(self, client):
        assert client.post("/api/packages/A/versions/banana/select").status_code == 400
        assert client.post("/api/packages/A/versions/banana/toggle").status_code == 400

    def test_toggle_flips_selection(self, client, feed):
        assert client.post("/api/packages/A/versions/1.0.0/toggle").json()["selected"] is True
        listed = client.get("/api/packages").json()
        assert listed["packages"][0]["versions"][0]["selected"] is True

        assert client.post("/api/packages/A/versions/1.0/toggle").json()["selected"] is False
        assert client.post("/api/packages/delete-selected", json={"confirm": True}).status_code == 400

    def test_delete_single_version_with_cli(self, client, feed, runner, session):
        response = client.delete("/api/packages/B/versions/2.0", params={"confirm": "true", "use_cli": "true"})

        assert response.status_code == 200
        assert response.json()["version"] == "2.0.0"
        assert runner.run.call_args.args[0] == [
            "dotnet", "nuget", "delete", "B", "2.0.0",
            "--source", FEED_ROOT, "--api-key", "secret-key", "--non-interactive",
        ]
        assert feed.requests_to("/api/v2/package/B/2.0.0") == []
        assert [v.version for v in session.find_package("B").versions] == ["1.0.0"]

    def test_delete_selected_with_cli_reports_failures(self, client, feed, runner):
        runner.run.return_value = CommandResult(args=["dotnet", "nuget", "delete"], exit_code=1, stderr="denied")
        client.post("/api/packages/A/versions/1.0.0/select")

        body = client.post("/api/packages/delete-selected", json={"confirm": True, "use_cli": True}).json()

        assert body["deleted"] == []
        assert body["failed"][0]["error"] == "CommandFailedError"
        assert "denied" in body["failed"][0]["message"]
        assert feed.requests_to("/api/v2/package/A/1.0.0") == []


class TestPushAndPack:
    def test_push(self, client, feed, tmp_path):
        package = tmp_path / "A.1.0.0.nupkg"
        package.write_bytes(b"PK")
        feed.on("PUT", "/api/v2/package", httpx.Response(201))

        body = client.post("/api/packages/push", json={"paths": [str(package), str(tmp_path / "missing.nupkg")]}).json()

        assert body["succeeded"] == 1
        assert body["failed"] == 1
        assert body["outcomes"][1]["error_type"] == "PushFileError"

    def test_push_with_cli(self, client, feed, runner, tmp_path):
        package = tmp_path / "A.1.0.0.nupkg"
        package.write_bytes(b"PK")

        body = client.post(
            "/api/packages/push",
            json={"paths": [str(package), str(tmp_path / "missing.nupkg")], "use_cli": True},
        ).json()

        assert [o["success"] for o in body["outcomes"]] == [True, False]
        assert body["outcomes"][1]["error_type"] == "CommandFailedError"
        args = runner.run.call_args.args[0]
        assert args[:4] == ["dotnet", "nuget", "push", str(package)]
        assert args[-2:] == ["--api-key", "secret-key"]
        # nothing goes through the HTTP publish service
        assert feed.requests_to("/api/v2/package") == []
        runner.run.assert_called_once()

    def test_push_with_cli_failure(self, client, runner, tmp_path):
        package = tmp_path / "A.1.0.0.nupkg"
        package.write_bytes(b"PK")
        runner.run.return_value = CommandResult(args=["dotnet", "nuget", "push"], exit_code=1, stderr="409 Conflict")

        body = client.post("/api/packages/push", json={"paths": [str(package)], "use_cli": True}).json()

        assert body["failed"] == 1
        assert "409 Conflict" in body["outcomes"][0]["error"]

    def test_push_requires_paths(self, client):
        assert client.post("/api/packages/push", json={"paths": []}).status_code == 400

    def test_load_solution_and_pack(self, client, runner, tmp_path):
        project = tmp_path / "src" / "Core.csproj"
        project.parent.mkdir()
        project.write_text("<Project />", encoding="utf-8")
        solution = tmp_path / "App.sln"
        solution.write_text(
            'Project("{FAE04EC0-301F-11D3-BF4B-00C04F79EFBC}") = "Core", "src\\Core.csproj", "{1}"\n',
            encoding="utf-8",
        )

        loaded = client.post("/api/solution/load", json={"path": str(solution)}).json()
        assert loaded["projects"] == {"Core": "src\\Core.csproj"}

        body = client.post("/api/projects/pack", json={"projects": ["Core", "Missing"], "version": "1.2.3"}).json()

        assert [r["success"] for r in body["results"]] == [True, False]
        args = runner.run.call_args.args[0]
        assert args[2] == str(project.resolve())
        assert "/p:PackageVersion=1.2.3" in args

    def test_missing_solution(self, client, tmp_path):
        assert client.post("/api/solution/load", json={"path": str(tmp_path / "x.sln")}).status_code == 404
