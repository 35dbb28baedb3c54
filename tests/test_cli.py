"""
Tests for the opskit command line interface.
"""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from opskit.fetcher import DomainRecord
from opskit.main import build_runner_config, cli
from opskit.probe import ProbeResult
from opskit.runner.exceptions import ConfigurationError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def job_dirs(tmp_path):
    workdir = tmp_path / "work"
    workdir.mkdir()
    lock_dir = tmp_path / "locks"
    return workdir, lock_dir


class TestLockrun:
    """Tests for the lockrun command."""

    def test_missing_mandatory_options(self, runner):
        result = runner.invoke(cli, ['lockrun', '--name', 'Nightly Sync'])

        assert result.exit_code == 1
        assert "Usage:" in result.output
        assert "--workdir" in result.output

    def test_successful_run(self, runner, job_dirs):
        workdir, lock_dir = job_dirs

        result = runner.invoke(cli, [
            'lockrun', '-n', 'Nightly Sync', '-d', str(workdir), '-c', 'echo synced',
            '--lock-dir', str(lock_dir),
        ])

        assert result.exit_code == 0
        assert not (lock_dir / "NightlySync.lock").exists()
        logs = list((workdir / "logs").glob("NightlySync.[0-9]*.log"))
        assert len(logs) == 1
        assert "synced" in logs[0].read_text()

    def test_failing_run_sends_alert(self, runner, job_dirs):
        workdir, lock_dir = job_dirs

        with patch('opskit.runner.notifier.SmtpNotifier.send_email') as send_email:
            result = runner.invoke(cli, [
                'lockrun', '-n', 'Nightly Sync', '-d', str(workdir),
                '-c', "echo 'FATAL: out of memory' >&2",
                '--lock-dir', str(lock_dir), '--email', 'ops@example.com,dba@example.com',
            ])

        assert result.exit_code == 1
        recipients = [c.args[0] for c in send_email.call_args_list]
        assert recipients == ['ops@example.com', 'dba@example.com']
        assert "FATAL: out of memory" in send_email.call_args_list[0].args[2]

    def test_job_file(self, runner, job_dirs, tmp_path):
        workdir, lock_dir = job_dirs
        job_file = tmp_path / "job.yaml"
        job_file.write_text(
            f"name: Report Export\nworkdir: {workdir}\ncommand: touch exported\n"
            f"lock_dir: {lock_dir}\n"
        )

        result = runner.invoke(cli, ['lockrun', '--job-file', str(job_file)])

        assert result.exit_code == 0
        assert (workdir / "exported").exists()

    def test_invalid_job_file(self, runner, tmp_path):
        job_file = tmp_path / "job.yaml"
        job_file.write_text("name: Job\nretries: 3\n")

        result = runner.invoke(cli, ['lockrun', '--job-file', str(job_file)])

        assert result.exit_code == 1
        assert "Unknown key" in result.output


class TestBuildRunnerConfig:
    """Tests for merging job files with command line values."""

    def test_command_line_wins(self, tmp_path):
        job_file = tmp_path / "job.yaml"
        job_file.write_text(
            "name: Job\nworkdir: /srv/job\ncommand: ./run.sh\n"
            "email: [file@example.com]\nignore_patterns: ['^DEBUG']\n"
        )

        config = build_runner_config(
            str(job_file),
            {'command': './run.sh --full', 'max_run_minutes': None},
            sms=(),
            email=('cli@example.com',),
            ignore_patterns=('^TRACE',),
            kill_after_max=False,
        )

        assert config.command == './run.sh --full'
        assert config.email_recipients == ('cli@example.com',)
        assert config.ignore_patterns == ('^DEBUG', '^TRACE')
        assert config.max_run_minutes == 60

    def test_missing_values(self):
        with pytest.raises(ConfigurationError, match="--command"):
            build_runner_config(None, {'name': 'Job', 'workdir': '/tmp'}, (), (), (), False)


class TestFetch:
    """Tests for the fetch command."""

    def test_no_domains(self, runner):
        result = runner.invoke(cli, ['fetch'])

        assert result.exit_code == 1
        assert "No domains given" in result.output

    def test_fetch_and_export(self, runner, tmp_path):
        domains_file = tmp_path / "domains.txt"
        domains_file.write_text("example.org\n# comment\nEXAMPLE.com\n")
        output = tmp_path / "report.json"
        records = [DomainRecord(domain="example.com"), DomainRecord(domain="example.org")]

        with patch('opskit.main.DomainFetcher.fetch_all', AsyncMock(return_value=records)) as fetch_all:
            result = runner.invoke(cli, [
                'fetch', 'example.com', '-f', str(domains_file), '-o', str(output),
            ])

        assert result.exit_code == 0, result.output
        assert fetch_all.call_args.args[0] == ['example.com', 'example.org']
        assert output.exists()

    def test_unsupported_output(self, runner):
        result = runner.invoke(cli, ['fetch', 'example.com', '-o', 'report.xml'])

        assert result.exit_code == 1
        assert "Unsupported output format" in result.output


class TestProbe:
    """Tests for the probe command."""

    def test_success_line(self, runner):
        probe_result = ProbeResult(url="http://example.com", status_code=200,
                                   final_url="http://example.com/", total_time=0.2, ttfb=0.1, size=10)

        with patch('opskit.main.HTTPProbe.probe', AsyncMock(return_value=probe_result)):
            result = runner.invoke(cli, ['probe', 'example.com'])

        assert result.exit_code == 0
        assert result.output.strip() == "200 0.200s ttfb=0.100s size=10B http://example.com/"

    def test_error_exit_status(self, runner):
        probe_result = ProbeResult(url="http://example.invalid", total_time=0.1, error="Cannot connect")

        with patch('opskit.main.HTTPProbe.probe', AsyncMock(return_value=probe_result)):
            result = runner.invoke(cli, ['probe', 'example.invalid'])

        assert result.exit_code == 1
        assert result.output.startswith("ERR ")

    def test_bad_scheme(self, runner):
        result = runner.invoke(cli, ['probe', 'ftp://example.com'])

        assert result.exit_code == 1
        assert "Unsupported URL scheme" in result.output
