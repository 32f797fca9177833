"""Tests for the docker compose runner and post-deploy smoke tests."""
import json
import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

from hearth.services.docker_compose import (
    CommandError,
    ComposeRunner,
    HealthEndpoint,
    SmokeTester,
)
from hearth.services.docker_compose.runner import parse_ps_output


def completed(stdout="", stderr="", returncode=0):
    return Mock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def runner(tmp_path):
    return ComposeRunner(tmp_path / "docker-compose.yml", env_file=tmp_path / ".env", project_dir=tmp_path)


class TestParsePsOutput:

    def test_json_lines(self):
        output = '{"Service": "grafana", "State": "running"}\n{"Service": "loki", "State": "exited"}\n'
        assert [s["Service"] for s in parse_ps_output(output)] == ["grafana", "loki"]

    def test_json_array(self):
        output = json.dumps([{"Service": "grafana"}])
        assert parse_ps_output(output) == [{"Service": "grafana"}]

    def test_empty(self):
        assert parse_ps_output("  \n") == []


class TestComposeRunner:
    """docker compose invocations."""

    @patch('subprocess.run')
    def test_up(self, mock_run, runner, tmp_path):
        mock_run.return_value = completed()

        assert runner.up() is True

        cmd = mock_run.call_args[0][0]
        assert cmd == [
            "docker", "compose", "-f", str(tmp_path / "docker-compose.yml"),
            "--env-file", str(tmp_path / ".env"), "up", "-d",
        ]
        assert mock_run.call_args[1]["cwd"] == str(tmp_path)

    @patch('subprocess.run')
    def test_up_failure(self, mock_run, runner):
        mock_run.side_effect = subprocess.CalledProcessError(1, "docker", stderr="port is already allocated")
        assert runner.up() is False

    @patch('subprocess.run')
    def test_ps(self, mock_run, runner):
        mock_run.return_value = completed(stdout='{"Service": "grafana", "State": "running", "Health": "healthy"}\n')

        services = runner.ps()

        assert services[0]["Health"] == "healthy"
        assert mock_run.call_args[0][0][-4:] == ["ps", "--all", "--format", "json"]

    @patch('subprocess.run')
    def test_ps_errors_raise(self, mock_run, runner):
        mock_run.side_effect = subprocess.CalledProcessError(1, "docker", stderr="no configuration file provided")

        with pytest.raises(CommandError) as exc_info:
            runner.ps()

        assert exc_info.value.returncode == 1
        assert "no configuration file provided" in str(exc_info.value)

    @patch('subprocess.run')
    def test_missing_docker(self, mock_run, runner):
        mock_run.side_effect = FileNotFoundError("docker")
        with pytest.raises(CommandError) as exc_info:
            runner.logs()
        assert exc_info.value.returncode == 127

    @patch('subprocess.run')
    def test_logs_args(self, mock_run, runner):
        mock_run.return_value = completed(stdout="grafana | ready\n")

        assert runner.logs("grafana", tail=20) == "grafana | ready\n"
        assert mock_run.call_args[0][0][-4:] == ["logs", "--tail", "20", "grafana"]

    @patch('subprocess.run')
    def test_health_status(self, mock_run, runner):
        mock_run.return_value = completed(stdout="healthy\n")
        assert runner.health_status("grafana") == "healthy"
        assert mock_run.call_args[0][0][:3] == ["docker", "inspect", "--format"]

    @patch('subprocess.run')
    def test_container_status_missing_container(self, mock_run, runner):
        mock_run.side_effect = subprocess.CalledProcessError(1, "docker", stderr="No such object")
        assert runner.container_status("ghost") is None

    @patch('subprocess.run')
    def test_restart_container(self, mock_run, runner):
        mock_run.return_value = completed()
        assert runner.restart_container("traefik")
        assert mock_run.call_args[0][0] == ["docker", "restart", "traefik"]

    @patch('subprocess.run')
    def test_mock_mode(self, mock_run, tmp_path):
        runner = ComposeRunner(tmp_path / "docker-compose.yml", mock=True)

        assert runner.up()
        assert runner.ps()[0]["State"] == "running"
        assert runner.health_status("grafana") == "healthy"
        assert runner.restart("grafana")
        mock_run.assert_not_called()

    def test_project_dir_defaults_to_compose_dir(self):
        runner = ComposeRunner(Path("/srv/stack/docker-compose.yml"))
        assert runner.project_dir == Path("/srv/stack")


class TestSmokeTester:
    """Health probing after deploy."""

    def test_http_endpoint(self):
        session = Mock()
        session.get.side_effect = [requests.ConnectionError("refused"), Mock(status_code=503), Mock(status_code=200)]
        sleep = Mock()
        endpoint = HealthEndpoint("grafana", "grafana", 3000, 3000, "/api/health")

        result = SmokeTester(Mock(mock=False), session=session, sleep=sleep).check_endpoint(endpoint)

        assert result.ok
        assert result.method == "http"
        assert result.target == "http://localhost:3000/api/health"
        assert sleep.call_count == 2

    def test_docker_health_fallback(self):
        runner = Mock(mock=False)
        runner.health_status.side_effect = ["starting", "healthy"]
        endpoint = HealthEndpoint("prometheus", "prometheus", 9090)

        result = SmokeTester(runner, session=Mock(), sleep=Mock()).check_endpoint(endpoint)

        assert result.ok
        assert result.method == "docker"
        runner.health_status.assert_called_with("prometheus")

    def test_unhealthy_container(self):
        runner = Mock(mock=False)
        runner.health_status.return_value = "unhealthy"
        endpoint = HealthEndpoint("loki", "loki")

        result = SmokeTester(runner, session=Mock(), attempts=3, sleep=Mock()).check_endpoint(endpoint)

        assert not result.ok
        assert result.detail == "container is unhealthy"

    def test_http_gives_up(self):
        session = Mock()
        session.get.return_value = Mock(status_code=502)
        endpoint = HealthEndpoint("grafana", "grafana", 3000, 3000, "/api/health")

        result = SmokeTester(Mock(mock=False), session=session, attempts=2, sleep=Mock()).check_endpoint(endpoint)

        assert not result.ok
        assert result.detail == "no HTTP 200 within 2 attempts"

    def test_mock_runner_skips_http_checks(self):
        session = Mock()
        endpoint = HealthEndpoint("grafana", "grafana", 3000, 3000, "/api/health")

        results = SmokeTester(ComposeRunner(mock=True), session=session).run([endpoint])

        assert results[0].ok
        session.get.assert_not_called()
