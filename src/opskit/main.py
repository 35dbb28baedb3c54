"""
CLI entry point for opskit.

Provides the ``lockrun`` (locking task runner), ``fetch`` (domain
intelligence) and ``probe`` (one-line HTTP probe) commands.
"""

import asyncio
import logging
import sys
from typing import Any, Dict, Optional, Tuple

import click

from .config import RunnerConfig, load_domain_list, load_job_file, dedupe_domains, split_recipients
from .console.output import ConsoleManager
from .fetcher import DomainFetcher
from .probe import HTTPProbe
from .reporter import Reporter
from .runner.exceptions import ConfigurationError
from .runner.notifier import SmtpNotifier, SmtpSettings
from .runner.task_runner import EXIT_FAILURE, TaskRunner


logger = logging.getLogger(__name__)


def setup_logging(log_level: str, debug_mode: bool = False, log_file: Optional[str] = None) -> None:
    """
    Configure root logging.

    An optional file handler receives everything at ``log_level``. The
    console handler stays silent unless debug mode is on, so scheduled runs
    only print what the commands print themselves.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        debug_mode: If True, display logs on the console as well
        log_file: Optional path of a log file
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    # Repeated invocations in one interpreter (tests) must not stack handlers
    for handler in list(root_logger.handlers):
        if getattr(handler, '_opskit_handler', False):
            root_logger.removeHandler(handler)
            handler.close()

    handlers = []
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    if debug_mode:
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
    else:
        console_handler.setLevel(logging.CRITICAL + 1)
    handlers.append(console_handler)

    root_logger.setLevel(numeric_level)
    for handler in handlers:
        handler._opskit_handler = True
        root_logger.addHandler(handler)

    logger.debug(f"Logging initialized at {log_level} level (debug_mode={debug_mode})")


def build_runner_config(
    job_file: Optional[str],
    cli_values: Dict[str, Any],
    sms: Tuple[str, ...],
    email: Tuple[str, ...],
    ignore_patterns: Tuple[str, ...],
    kill_after_max: bool,
) -> RunnerConfig:
    """
    Merge the optional job file with command line values.

    Command line values win; recipients and ignore patterns given on the
    command line replace (recipients) or extend (patterns) the file's.

    Raises:
        ConfigurationError: If mandatory values are missing or invalid
        FileNotFoundError: If the job file does not exist
        ValueError: If the job file cannot be parsed
    """
    values = load_job_file(job_file) if job_file else {}
    values.update({key: value for key, value in cli_values.items() if value is not None})

    if sms:
        values['sms_recipients'] = split_recipients(list(sms))
    if email:
        values['email_recipients'] = split_recipients(list(email))
    values['ignore_patterns'] = tuple(values.get('ignore_patterns', ())) + tuple(ignore_patterns)
    values['kill_after_max'] = kill_after_max or values.get('kill_after_max', False)

    return RunnerConfig(
        name=values.pop('name', ''),
        workdir=values.pop('workdir', ''),
        command=values.pop('command', ''),
        **values
    )


@click.group()
@click.version_option(package_name='opskit')
def cli() -> None:
    """
    opskit - small operational toolkit.

    Locking task runner for cron jobs, domain intelligence fetcher and a
    one-line HTTP probe.
    """
    pass


@cli.command(name='lockrun')
@click.option('-n', '--name', help='Human-readable job name (the lock key is derived from it)')
@click.option('-d', '--workdir', type=click.Path(), help='Directory the command runs in')
@click.option('-c', '--command', 'command', help='Command line to run through the shell')
@click.option('-l', '--log-dir', type=click.Path(), help='Log directory (default: <workdir>/logs)')
@click.option('--lock-dir', type=click.Path(), help='Directory holding lock directories (default: system temp dir)')
@click.option('--sms', multiple=True, help='SMS gateway address; repeatable or comma separated')
@click.option('--email', multiple=True, help='Email address; repeatable or comma separated')
@click.option('--max-run-minutes', type=float, help='Age after which a held lock is reported as stale (default: 60)')
@click.option('--alert-gap-minutes', type=float, help='Minimum minutes between two alerts (default: 60)')
@click.option('--ignore-pattern', multiple=True, help='Regex of benign stderr lines to drop; repeatable')
@click.option('--kill-after-max', is_flag=True, default=False,
              help='Terminate the command once it runs longer than --max-run-minutes')
@click.option('--job-file', type=click.Path(), help='YAML/JSON job definition')
@click.option('--smtp-host', envvar='OPSKIT_SMTP_HOST', default='localhost', show_default=True)
@click.option('--smtp-port', envvar='OPSKIT_SMTP_PORT', type=int, default=25, show_default=True)
@click.option('--smtp-sender', envvar='OPSKIT_SMTP_SENDER', help='From address of alerts')
@click.option('--smtp-user', envvar='OPSKIT_SMTP_USER')
@click.option('--smtp-password', envvar='OPSKIT_SMTP_PASSWORD')
@click.option('--smtp-ssl', envvar='OPSKIT_SMTP_SSL', is_flag=True, default=False, help='Use SMTP over SSL')
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default='INFO',
    help='Logging level (default: INFO)'
)
@click.option('--debug', is_flag=True, default=False, help='Echo log records to the console')
@click.pass_context
def lockrun_command(
    ctx: click.Context,
    name: Optional[str],
    workdir: Optional[str],
    command: Optional[str],
    log_dir: Optional[str],
    lock_dir: Optional[str],
    sms: Tuple[str, ...],
    email: Tuple[str, ...],
    max_run_minutes: Optional[float],
    alert_gap_minutes: Optional[float],
    ignore_pattern: Tuple[str, ...],
    kill_after_max: bool,
    job_file: Optional[str],
    smtp_host: str,
    smtp_port: int,
    smtp_sender: Optional[str],
    smtp_user: Optional[str],
    smtp_password: Optional[str],
    smtp_ssl: bool,
    log_level: str,
    debug: bool,
) -> None:
    """
    Run COMMAND under a per-job lock with throttled error alerts.

    Only one invocation per job name runs at a time; later invocations exit
    quietly while the lock is younger than --max-run-minutes and raise an
    alert once it is older. Anything the command writes to stderr (after
    dropping benign lines) is an error: it is mailed to the recipients at
    most once per --alert-gap-minutes and makes the exit status 1.

    Examples:

        # Nightly job from cron
        opskit lockrun -n "Nightly Sync" -d /srv/sync -c "./sync.sh" --email ops@example.com

        # Job definition in a file
        opskit lockrun --job-file /etc/opskit/nightly-sync.yaml
    """
    setup_logging(log_level, debug_mode=debug)
    console_manager = ConsoleManager(debug_mode=debug, stderr=True)

    try:
        config = build_runner_config(
            job_file,
            {
                'name': name,
                'workdir': workdir,
                'command': command,
                'log_dir': log_dir,
                'lock_dir': lock_dir,
                'max_run_minutes': max_run_minutes,
                'alert_gap_minutes': alert_gap_minutes,
            },
            sms=sms,
            email=email,
            ignore_patterns=ignore_pattern,
            kill_after_max=kill_after_max,
        )
        notifier = SmtpNotifier(SmtpSettings(
            host=smtp_host,
            port=smtp_port,
            sender=smtp_sender,
            user=smtp_user,
            password=smtp_password,
            use_ssl=smtp_ssl,
        ))
        runner = TaskRunner(config, notifier)
    except ConfigurationError as e:
        # Configuration errors exit 1 before any side effect
        click.echo(ctx.get_usage(), err=True)
        console_manager.print_error(str(e))
        sys.exit(EXIT_FAILURE)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {str(e)}")
        console_manager.print_error(f"Configuration error: {str(e)}")
        sys.exit(EXIT_FAILURE)

    try:
        exit_code = runner.run()
    except Exception as e:
        error_msg = str(e) if str(e) else f"{type(e).__name__} occurred"
        logger.error(f"Unexpected error in job '{config.name}': {error_msg}", exc_info=True)
        console_manager.print_error(error_msg, details={'job': config.name}, exception=e)
        sys.exit(EXIT_FAILURE)

    sys.exit(exit_code)


@cli.command(name='fetch')
@click.argument('domains', nargs=-1)
@click.option('-f', '--file', type=click.Path(exists=True), help='Domain list (YAML/JSON or one domain per line)')
@click.option('-o', '--output', type=click.Path(), help='Output file path (.json or .csv)')
@click.option('--timeout', type=int, default=10, show_default=True, help='Per-source timeout in seconds')
@click.option('--nameserver', help='Nameserver IP for DNS queries (default: system resolver)')
@click.option('--log-file', type=click.Path(), help='Write logs to this file')
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default='INFO',
    help='Logging level (default: INFO)'
)
@click.option('--debug', is_flag=True, default=False, help='Enable debug mode with verbose console output')
def fetch_command(
    domains: Tuple[str, ...],
    file: Optional[str],
    output: Optional[str],
    timeout: int,
    nameserver: Optional[str],
    log_file: Optional[str],
    log_level: str,
    debug: bool,
) -> None:
    """
    Fetch WHOIS, DNS and HTTP liveness data for DOMAINS.

    Examples:

        opskit fetch example.com example.org

        opskit fetch -f domains.txt -o report.csv
    """
    setup_logging(log_level, debug_mode=debug, log_file=log_file)
    console_manager = ConsoleManager(debug_mode=debug)

    try:
        names = list(domains)
        if file:
            names.extend(load_domain_list(file))
        names = dedupe_domains(names)
        if not names:
            raise click.ClickException("No domains given. Pass domain names or use -f/--file.")
        console_manager.print_info(f"Fetching {len(names)} domain(s) with a {timeout}s timeout per source")

        if output and not output.lower().endswith(('.json', '.csv')):
            raise click.ClickException(
                f"Unsupported output format: {output}. Please use .json or .csv extension."
            )

        fetcher = DomainFetcher(timeout=timeout, nameserver=nameserver, console_manager=console_manager)
        records = asyncio.run(fetcher.fetch_all(names))

        reporter = Reporter(records, console_manager)
        reporter.display_table()
        if output:
            reporter.export(output)

    except click.ClickException:
        raise

    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Domain list error: {str(e)}", exc_info=True)
        raise click.ClickException(str(e))

    except Exception as e:
        error_msg = str(e) if str(e) else f"{type(e).__name__} occurred"
        logger.error(f"Unexpected error: {error_msg}", exc_info=True)
        console_manager.print_error(error_msg, details={'error_type': type(e).__name__}, exception=e)
        sys.exit(1)


@cli.command(name='probe')
@click.argument('url')
@click.option('--timeout', type=float, default=10.0, show_default=True, help='Request timeout in seconds')
@click.option('--method', type=click.Choice(['GET', 'HEAD'], case_sensitive=False), default='GET', show_default=True)
@click.option('--no-redirects', is_flag=True, default=False, help='Do not follow redirects')
def probe_command(url: str, timeout: float, method: str, no_redirects: bool) -> None:
    """
    Print one line with the HTTP status and timing of URL.

    Exit status is 0 for responses below 400, 1 otherwise.
    """
    probe = HTTPProbe(timeout=timeout, method=method, follow_redirects=not no_redirects)
    try:
        result = asyncio.run(probe.probe(url))
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(result.format_line())
    sys.exit(0 if result.ok else 1)


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == '__main__':
    main()
