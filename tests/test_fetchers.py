"""Tests for the resource fetchers."""

import base64

import httpx
import pytest

from github_compliance_monitor.core.models import FindingTool
from github_compliance_monitor.fetchers import (
    CodeScanningFetcher,
    DependabotFetcher,
    MetricsSummaryFetcher,
    OwnershipFileFetcher,
    RepositoryFetcher,
    SecretScanningFetcher,
    TeamFetcher,
    find_ownership_file,
)
from github_compliance_monitor.fetchers.findings import parse_github_datetime
from github_compliance_monitor.github.client import GitHubAPIError

from conftest import NOW, json_response, make_client, make_repository, repo_payload


def code_scanning_alert(number: int, severity="error", path="src/app.py") -> dict:
    return {
        "number": number,
        "html_url": f"https://github.com/acme/api/security/code-scanning/{number}",
        "created_at": "2024-05-01T10:00:00Z",
        "rule": {"severity": severity, "description": "SQL injection"},
        "most_recent_instance": {
            "message": {"text": "User input flows into a query"},
            "location": {"path": path},
        },
    }


class TestRepositoryFetcher:
    """Test repository listing and custom properties."""

    @pytest.mark.asyncio
    async def test_fetch_with_custom_properties(self, fake_client, database):
        fake_client.repositories = [repo_payload(2, "web"), repo_payload(1, "api")]
        fake_client.custom_properties["acme/api"] = {"pod": "core", "environmentType": "Production"}

        result = await RepositoryFetcher(fake_client, database).fetch()

        assert [r.id for r in result.items] == [2, 1]
        api = database.repositories.get(1)
        assert api.full_name == "acme/api"
        assert api.custom_properties.pod == "core"
        assert api.custom_properties.is_production
        assert database.repositories.get(2).custom_properties == {}
        assert result.report.skipped == []

    @pytest.mark.asyncio
    async def test_custom_properties_failure_is_skipped(self, fake_client, database):
        fake_client.repositories = [repo_payload(1, "api"), repo_payload(2, "web")]
        fake_client.fail("get_custom_properties", "acme/api", GitHubAPIError("Forbidden", 403))

        result = await RepositoryFetcher(fake_client, database).fetch()

        assert database.repositories.count() == 2
        assert database.repositories.get(1).custom_properties == {}
        assert result.report.skipped_keys() == {"acme/api:custom_properties"}

    @pytest.mark.asyncio
    async def test_list_failure_is_stage_failure(self, fake_client, database):
        fake_client.fail("list_user_repositories", None, GitHubAPIError("Bad credentials", 401))

        with pytest.raises(GitHubAPIError):
            await RepositoryFetcher(fake_client, database).fetch()

        assert database.repositories.count() == 0

    @pytest.mark.asyncio
    async def test_refetch_overwrites(self, fake_client, database):
        fake_client.repositories = [repo_payload(1, "api")]
        await RepositoryFetcher(fake_client, database).fetch()

        fake_client.repositories = [repo_payload(1, "api-renamed")]
        await RepositoryFetcher(fake_client, database).fetch()

        assert database.repositories.count() == 1
        assert database.repositories.get(1).name == "api-renamed"


class TestTeamFetcher:
    """Test team listing."""

    @pytest.mark.asyncio
    async def test_fetch_organization_teams(self, fake_client, database):
        fake_client.teams = [
            {"id": 10, "name": "Backend", "slug": "backend", "html_url": "https://github.com/orgs/acme/teams/backend"},
            {"id": 11, "name": "Docs", "slug": "docs", "description": "Writers"},
        ]

        result = await TeamFetcher(fake_client, database, organization="acme").fetch()

        assert ("list_teams", "acme") in fake_client.calls
        assert database.teams.count() == 2
        assert database.teams.get(11).description == "Writers"
        assert {r.key for r in result.report.succeeded} == {"backend", "docs"}

    @pytest.mark.asyncio
    async def test_fetch_user_teams_without_organization(self, fake_client, database):
        await TeamFetcher(fake_client, database).fetch()

        assert ("list_teams", None) in fake_client.calls


class TestFindingFetchers:
    """Test alert mapping for the three tools."""

    @pytest.mark.asyncio
    async def test_code_scanning_mapping(self, fake_client, database):
        repo = make_repository(7, "api")
        database.repositories.put(repo)
        fake_client.alerts[FindingTool.CODE_SCANNING]["acme/api"] = [code_scanning_alert(3)]

        result = await CodeScanningFetcher(fake_client, database).fetch()

        finding = database.findings.get("code_7_3")
        assert result.items == [finding]
        assert finding.tool == FindingTool.CODE_SCANNING
        assert finding.severity == "error"
        assert finding.title == "SQL injection"
        assert finding.description == "User input flows into a query"
        assert finding.directory_path == "src/app.py"
        assert finding.created_at.year == 2024
        assert finding.owner is None

    @pytest.mark.asyncio
    async def test_code_scanning_missing_severity(self, fake_client, database):
        database.repositories.put(make_repository(7, "api"))
        alert = code_scanning_alert(1)
        alert["rule"] = {}
        fake_client.alerts[FindingTool.CODE_SCANNING]["acme/api"] = [alert]

        await CodeScanningFetcher(fake_client, database).fetch()

        assert database.findings.get("code_7_1").severity == "unknown"

    @pytest.mark.asyncio
    async def test_secret_scanning_mapping(self, fake_client, database):
        database.repositories.put(make_repository(7, "api"))
        fake_client.alerts[FindingTool.SECRET_SCANNING]["acme/api"] = [
            {"number": 1, "secret_type": "github_personal_access_token", "location": "config/settings.py"},
            {"number": 2, "secret_type": "aws_access_key_id", "location": {"details": {"path": "deploy/.env"}}},
            {"number": 3, "secret_type": "slack_webhook"},
        ]

        await SecretScanningFetcher(fake_client, database).fetch()

        first = database.findings.get("secret_7_1")
        assert first.severity == "critical"
        assert first.title == "Exposed github_personal_access_token"
        assert first.description == "Secret detected in github_personal_access_token"
        assert first.directory_path == "config/settings.py"
        assert database.findings.get("secret_7_2").directory_path == "deploy/.env"
        assert database.findings.get("secret_7_3").directory_path == ""

    @pytest.mark.asyncio
    async def test_dependabot_mapping(self, fake_client, database):
        database.repositories.put(make_repository(7, "api"))
        fake_client.alerts[FindingTool.DEPENDABOT]["acme/api"] = [
            {
                "number": 12,
                "created_at": "2024-01-15T08:30:00Z",
                "dependency": {"manifest_path": "requirements.txt"},
                "security_advisory": {
                    "severity": "Moderate",
                    "summary": "ReDoS in parser",
                    "description": "Crafted input causes catastrophic backtracking",
                },
            }
        ]

        await DependabotFetcher(fake_client, database).fetch()

        finding = database.findings.get("dependabot_7_12")
        assert finding.severity == "Moderate"
        assert finding.title == "ReDoS in parser"
        assert finding.description == "Crafted input causes catastrophic backtracking"
        assert finding.directory_path == "requirements.txt"

    @pytest.mark.asyncio
    async def test_repository_failure_is_isolated(self, fake_client, database):
        database.repositories.bulk_put([make_repository(1, "api"), make_repository(2, "web")])
        fake_client.fail("list_code_scanning_alerts", "acme/api", GitHubAPIError("Advanced Security must be enabled", 403))
        fake_client.alerts[FindingTool.CODE_SCANNING]["acme/web"] = [code_scanning_alert(1)]

        result = await CodeScanningFetcher(fake_client, database).fetch()

        assert [f.id for f in result.items] == ["code_2_1"]
        assert result.report.skipped_keys() == {"acme/api:code_scanning"}
        assert {r.key for r in result.report.succeeded} == {"acme/web:code_scanning"}

    @pytest.mark.asyncio
    async def test_transport_error_is_isolated(self, fake_client, database):
        database.repositories.put(make_repository(1, "api"))
        fake_client.fail("list_dependabot_alerts", "acme/api", httpx.ReadTimeout("timed out"))

        result = await DependabotFetcher(fake_client, database).fetch()

        assert result.items == []
        assert result.report.skipped[0].reason.startswith("ReadTimeout")

    @pytest.mark.asyncio
    async def test_unparseable_alert_is_skipped(self, fake_client, database):
        database.repositories.put(make_repository(1, "api"))
        fake_client.alerts[FindingTool.DEPENDABOT]["acme/api"] = [
            {"number": 1},
            {"number": 2, "security_advisory": {"severity": "high"}},
        ]

        result = await DependabotFetcher(fake_client, database).fetch()

        assert [f.id for f in result.items] == ["dependabot_1_2"]
        assert "acme/api:dependabot#1" in result.report.skipped_keys()

    def test_parse_github_datetime(self):
        parsed = parse_github_datetime("2024-05-01T10:00:00Z")
        assert parsed.tzinfo is not None
        assert (parsed.year, parsed.month, parsed.day, parsed.hour) == (2024, 5, 1, 10)


class TestOwnershipFileFetcher:
    """Test CODEOWNERS discovery and rule storage."""

    @pytest.mark.asyncio
    async def test_candidate_order(self, fake_client):
        fake_client.files[("acme/api", ".github/CODEOWNERS")] = "* @github-dir"
        fake_client.files[("acme/api", "docs/CODEOWNERS")] = "* @docs-dir"

        lookup = await find_ownership_file(fake_client, "acme/api")

        assert (lookup.path, lookup.content) == (".github/CODEOWNERS", "* @github-dir")
        assert lookup.errors == []

    @pytest.mark.asyncio
    async def test_failing_candidate_moves_on(self, fake_client):
        fake_client.fail("get_file_content", "acme/api:CODEOWNERS", GitHubAPIError("Server Error", 500))
        fake_client.files[("acme/api", "docs/CODEOWNERS")] = "* @docs"

        lookup = await find_ownership_file(fake_client, "acme/api")

        assert (lookup.path, lookup.content) == ("docs/CODEOWNERS", "* @docs")
        assert lookup.errors == ["CODEOWNERS: HTTP 500: Server Error"]

    @pytest.mark.asyncio
    async def test_fetch_stores_rules(self, fake_client, database):
        database.repositories.bulk_put([make_repository(1, "api"), make_repository(2, "web")])
        fake_client.files[("acme/api", "CODEOWNERS")] = "* @org/api\nsrc/* @org/backend\n"

        result = await OwnershipFileFetcher(fake_client, database).fetch()

        assert len(result.items) == 2
        assert [r.directory_path for r in database.ownership_rules.where(repository_id=1)] == ["*", "src/*"]
        assert database.ownership_rules.where(repository_id=2) == []
        assert result.report.skipped_keys() == {"acme/web:codeowners"}
        assert result.report.skipped[0].reason == "no CODEOWNERS file found"

    @pytest.mark.asyncio
    async def test_lookup_errors_are_reported(self, fake_client, database):
        database.repositories.put(make_repository(1, "api"))
        fake_client.fail("get_file_content", "acme/api:CODEOWNERS", GitHubAPIError("Server Error", 500))

        result = await OwnershipFileFetcher(fake_client, database).fetch()

        assert result.items == []
        assert result.report.skipped[0].key == "acme/api:codeowners"
        assert result.report.skipped[0].reason == "CODEOWNERS: HTTP 500: Server Error"

    @pytest.mark.asyncio
    async def test_undecodable_file_is_isolated(self, database):
        database.repositories.bulk_put([make_repository(1, "bad"), make_repository(2, "good")])
        encoded = base64.b64encode(b"* @org/good\n").decode()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/bad/contents/CODEOWNERS":
                return json_response(200, {"type": "file", "content": "!!!not-base64"})
            if request.url.path == "/repos/acme/good/contents/CODEOWNERS":
                return json_response(200, {"type": "file", "content": encoded})
            return json_response(404, {"message": "Not Found"})

        async with make_client(handler) as client:
            result = await OwnershipFileFetcher(client, database, max_concurrency=2).fetch()

        assert [r.owner for r in result.items] == ["@org/good"]
        assert database.ownership_rules.where(repository_id=1) == []
        skipped = {item.key: item.reason for item in result.report.skipped}
        assert "Undecodable content" in skipped["acme/bad:codeowners"]

    @pytest.mark.asyncio
    async def test_removed_pattern_is_dropped(self, fake_client, database):
        database.repositories.put(make_repository(1, "api"))
        fake_client.files[("acme/api", "CODEOWNERS")] = "* @org/api\nsrc/* @org/backend\n"
        await OwnershipFileFetcher(fake_client, database).fetch()

        fake_client.files[("acme/api", "CODEOWNERS")] = "* @org/api\n"
        await OwnershipFileFetcher(fake_client, database).fetch()

        assert [r.directory_path for r in database.ownership_rules.all()] == ["*"]

    @pytest.mark.asyncio
    async def test_deleted_file_clears_rules(self, fake_client, database):
        database.repositories.put(make_repository(1, "api"))
        fake_client.files[("acme/api", "CODEOWNERS")] = "* @org/api\n"
        await OwnershipFileFetcher(fake_client, database).fetch()

        del fake_client.files[("acme/api", "CODEOWNERS")]
        await OwnershipFileFetcher(fake_client, database).fetch()

        assert database.ownership_rules.count() == 0


class TestMetricsSummaryFetcher:
    """Test the metrics summary."""

    @pytest.mark.asyncio
    async def test_counts_and_commit_sample(self, fake_client, database):
        repos = [make_repository(i, f"repo{i}") for i in range(1, 8)]
        database.repositories.bulk_put(repos)
        for repo in repos:
            fake_client.commits[repo.full_name] = [{"sha": "a"}, {"sha": "b"}]

        result = await MetricsSummaryFetcher(fake_client, database).fetch(completed_at=NOW)

        summary = database.get_metrics_summary()
        assert result.items == [summary]
        assert summary.repository_count == 7
        assert summary.team_count == 0
        # Only the first five repositories are sampled
        assert summary.commit_count == 10
        assert summary.last_fetched == NOW
        sampled = {key for method, key in fake_client.calls if method == "list_commits"}
        assert sampled == {f"acme/repo{i}" for i in range(1, 6)}

    @pytest.mark.asyncio
    async def test_commit_failure_is_skipped(self, fake_client, database):
        database.repositories.bulk_put([make_repository(1, "api"), make_repository(2, "web")])
        fake_client.commits["acme/web"] = [{"sha": "a"}]
        fake_client.fail("list_commits", "acme/api", GitHubAPIError("Git Repository is empty.", 409))

        result = await MetricsSummaryFetcher(fake_client, database).fetch(completed_at=NOW)

        assert database.get_metrics_summary().commit_count == 1
        assert result.report.skipped_keys() == {"acme/api:commits"}
