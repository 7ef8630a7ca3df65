"""cftunnel - command-line entry point."""

import time
from pathlib import Path

import click
from pydantic import ValidationError

from . import __version__
from .common.context import CancellationToken, cancel_on_interrupt
from .common.exceptions import (
    CftunnelError,
    ConfigError,
    ConflictError,
    MetricsUnavailableError,
    RemoteError,
    RemoteNotFoundError,
    ServiceError,
    SettingsError,
    UnauthorizedError,
)
from .common.logging import get_logger, setup_logging
from .common.utils import mask_token, short_id
from .config import (
    ConfigStore,
    IngressMapping,
    Settings,
    clear_settings,
    default_credentials_path,
    load_settings,
    save_settings,
)
from .reconcile import (
    ExitCode,
    Outcome,
    ReconcileRequest,
    ReconciliationEngine,
    ReconciliationPlan,
    ReconciliationReport,
)
from .reconcile.planner import is_tunnel_cname
from .remote import (
    AccessApplication,
    AccessPolicy,
    AccessPolicyRule,
    DnsRecordSpec,
    RemoteStateClient,
)
from .service import (
    CommandRunner,
    ServiceSupervisor,
    TunnelMetrics,
    fetch_metrics,
    format_count,
    select_supervisor,
)

logger = get_logger(__name__)


def exit_code_for(error: CftunnelError) -> ExitCode:
    """Translate a fatal error into the process exit code."""
    if isinstance(error, ConfigError | SettingsError):
        return ExitCode.CONFIG_ERROR
    if isinstance(error, ConflictError):
        return ExitCode.CONFLICT
    if isinstance(error, RemoteError):
        return ExitCode.REMOTE_ERROR
    if isinstance(error, ServiceError):
        return ExitCode.SERVICE_ERROR
    return ExitCode.FAILURE


class TunnelGroup(click.Group):
    """Group that turns cftunnel errors into messages and exit codes."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except CftunnelError as e:
            click.echo(click.style("Error: ", fg="red", bold=True) + str(e), err=True)
            ctx.exit(exit_code_for(e))


class AppContext:
    """Lazily built collaborators shared by every command."""

    def __init__(self, settings: Settings, config_file: Path | None = None):
        self.settings = settings
        self.config_file = config_file
        self._remote: RemoteStateClient | None = None

    def store(self) -> ConfigStore:
        return ConfigStore(self.settings.ingress_path, lock_timeout=self.settings.lock_timeout)

    def remote(self, zone: bool = False) -> RemoteStateClient:
        if zone:
            self.settings.require_zone()
        if self._remote is None:
            self._remote = RemoteStateClient.from_settings(self.settings)
        return self._remote

    def supervisor(self) -> ServiceSupervisor:
        return select_supervisor(
            runner=CommandRunner(timeout=self.settings.service_timeout),
            restart_timeout=self.settings.restart_timeout,
        )

    def optional_supervisor(self) -> ServiceSupervisor | None:
        try:
            return self.supervisor()
        except ServiceError as e:
            logger.warning("Service management unavailable", error=str(e))
            return None

    def engine(self, request: ReconcileRequest) -> ReconciliationEngine:
        return ReconciliationEngine(
            store=self.store(),
            supervisor=self.optional_supervisor(),
            remote=None if request.offline else self.remote(zone=True),
            max_workers=self.settings.max_workers,
        )

    def tunnel_id(self, tunnel_id: str | None) -> str:
        tunnel_id = tunnel_id or self.settings.tunnel_id
        if not tunnel_id:
            raise SettingsError(
                "No tunnel selected. Pass --tunnel or run `tunnel config set --tunnel-id`."
            )
        return tunnel_id

    def close(self) -> None:
        if self._remote is not None:
            self._remote.close()


pass_app = click.make_pass_decorator(AppContext)


# -- rendering ----------------------------------------------------------------


def render_plan(plan: ReconciliationPlan) -> None:
    if plan.is_empty:
        click.echo("Nothing to do.")
        return
    click.echo(click.style("Planned actions:", bold=True))
    for index, line in enumerate(plan.describe(), start=1):
        click.echo(f"  {index}. {line}")


_OUTCOME_COLORS = {
    Outcome.SUCCESS: "green",
    Outcome.NOOP: "green",
    Outcome.PARTIAL: "yellow",
    Outcome.FAILURE: "red",
}


def render_report(report: ReconciliationReport) -> None:
    if report.outcome == Outcome.NOOP:
        click.echo("Nothing to do.")
        return

    for hostname, result in report.hostnames.items():
        if result.converged:
            mark = click.style("✓", fg="green")
        elif result.failed_action is None:
            mark = click.style("-", fg="yellow")
        else:
            mark = click.style("✗", fg="red")
        click.echo(f"{mark} {hostname}")
        for line in result.applied:
            click.echo(f"    {line}")
        if result.failed_action is not None:
            click.echo(click.style(f"    failed: {result.failed_action}: {result.error}", fg="red"))
        for line in result.skipped:
            click.echo(click.style(f"    skipped: {line}", fg="yellow"))

    if report.restarted:
        click.echo("Service restarted.")
    if report.service_error:
        click.echo(click.style(f"Service: {report.service_error}", fg="yellow"), err=True)
    if report.commit_error:
        click.echo(click.style(f"Commit: {report.commit_error}", fg="red"), err=True)
    if report.cancelled:
        click.echo(click.style(f"Cancelled: {report.cancel_reason}", fg="yellow"), err=True)

    click.echo(
        click.style(f"Result: {report.outcome.value}", fg=_OUTCOME_COLORS[report.outcome], bold=True)
    )


def run_request(app: AppContext, request: ReconcileRequest, dry_run: bool) -> None:
    engine = app.engine(request)
    if dry_run:
        render_plan(engine.plan(request))
        return

    token = CancellationToken(timeout=app.settings.cycle_timeout)
    with cancel_on_interrupt(token):
        report = engine.reconcile(request, token)
    render_report(report)
    if report.exit_code != ExitCode.OK:
        click.get_current_context().exit(report.exit_code)


# -- root ---------------------------------------------------------------------


@click.group(cls=TunnelGroup)
@click.version_option(version=__version__, prog_name="tunnel")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help=f"Credential file (default: {default_credentials_path()})",
)
@click.option(
    "--ingress",
    "ingress_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Ingress declaration file (overrides CFT_INGRESS_PATH)",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity")
@click.option("--json-logs", is_flag=True, help="Emit JSON formatted logs")
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    ingress_path: Path | None,
    verbose: int,
    json_logs: bool,
) -> None:
    """Map public hostnames to local services through a Cloudflare tunnel.

    Declarations live in a local ingress file; DNS records, the tunnel's
    remote ingress and the cloudflared service are reconciled against it.
    """
    settings = load_settings(config_file)
    if ingress_path is not None:
        settings = settings.model_copy(update={"ingress_path": ingress_path})

    level = settings.log_level
    if verbose == 1:
        level = "INFO"
    elif verbose > 1:
        level = "DEBUG"
    setup_logging(level=level, json_format=json_logs)

    app = AppContext(settings, config_file)
    ctx.obj = app
    ctx.call_on_close(app.close)


# -- ingress ------------------------------------------------------------------


@cli.command("map")
@click.argument("hostname")
@click.argument("service")
@click.option("--tunnel", "tunnel_id", help="Tunnel ID (default: configured tunnel)")
@click.option("--path", help="Path regex restricting the rule")
@click.option("--sync-dns", is_flag=True, help="Create or update the hostname's CNAME")
@click.option(
    "--force", is_flag=True, help="Overwrite conflicting remote ingress rules (with --sync-dns)"
)
@click.option("--dry-run", is_flag=True, help="Show the plan without applying it")
@pass_app
def map_command(
    app: AppContext,
    hostname: str,
    service: str,
    tunnel_id: str | None,
    path: str | None,
    sync_dns: bool,
    force: bool,
    dry_run: bool,
) -> None:
    """Declare HOSTNAME → SERVICE (e.g. http://localhost:8080)."""
    if force and not sync_dns:
        raise click.UsageError("--force only applies together with --sync-dns")
    try:
        mapping = IngressMapping(
            hostname=hostname, service=service, tunnel=app.tunnel_id(tunnel_id), path=path
        )
    except ValidationError as e:
        raise click.BadParameter(
            "; ".join(err["msg"] for err in e.errors()), param_hint="HOSTNAME/SERVICE"
        ) from e

    run_request(app, ReconcileRequest.map(mapping, sync_dns=sync_dns, force=force), dry_run)


@cli.command("unmap")
@click.argument("hostname")
@click.option("--sync-dns", is_flag=True, help="Delete the hostname's tunnel CNAME")
@click.option("--dry-run", is_flag=True, help="Show the plan without applying it")
@pass_app
def unmap_command(app: AppContext, hostname: str, sync_dns: bool, dry_run: bool) -> None:
    """Remove the declaration for HOSTNAME."""
    try:
        request = ReconcileRequest.unmap(hostname, sync_dns=sync_dns)
    except ValidationError as e:
        raise click.BadParameter(str(e.errors()[0]["msg"]), param_hint="HOSTNAME") from e
    run_request(app, request, dry_run)


@cli.command("show")
@pass_app
def show_command(app: AppContext) -> None:
    """List declared mappings."""
    snapshot = app.store().load(missing_ok=True)
    if not snapshot.mappings:
        click.echo("No mappings declared.")
        return
    width = max(len(m.hostname) for m in snapshot.mappings)
    for mapping in snapshot.mappings:
        line = f"{mapping.hostname:<{width}}  →  {mapping.service}  [{short_id(mapping.tunnel_id)}]"
        if mapping.path:
            line += f"  path={mapping.path}"
        click.echo(line)


# -- DNS ----------------------------------------------------------------------


@cli.group("dns", cls=TunnelGroup)
def dns_group() -> None:
    """DNS records of the configured zone."""


@dns_group.command("sync")
@click.option("--tunnel", "tunnel_id", help="Tunnel ID (default: configured tunnel)")
@click.option("--force", is_flag=True, help="Overwrite conflicting remote ingress rules")
@click.option("--dry-run", is_flag=True, help="Show the plan without applying it")
@pass_app
def dns_sync(app: AppContext, tunnel_id: str | None, force: bool, dry_run: bool) -> None:
    """Project every declared hostname of a tunnel onto DNS; delete orphans."""
    run_request(app, ReconcileRequest.sync(app.tunnel_id(tunnel_id), force=force), dry_run)


@dns_group.command("list")
@pass_app
def dns_list(app: AppContext) -> None:
    """List DNS records, marking those routed through a tunnel."""
    records = app.remote(zone=True).list_dns_records()
    if not records:
        click.echo("No DNS records.")
        return
    for record in sorted(records, key=lambda r: r.hostname):
        marker = "*" if is_tunnel_cname(record.content) else " "
        proxied = "proxied" if record.proxied else "dns-only"
        click.echo(f"{marker} {record.record_type:<6} {record.hostname}  →  {record.content}  ({proxied})")


@dns_group.command("add")
@click.argument("name")
@click.argument("content", required=False)
@click.option(
    "--type",
    "record_type",
    type=click.Choice(["CNAME", "A", "AAAA", "TXT", "MX"], case_sensitive=False),
    default="CNAME",
    show_default=True,
)
@click.option("--proxied/--dns-only", default=True, show_default=True)
@click.option("--tunnel", "tunnel_id", help="Route a CNAME to this tunnel when CONTENT is omitted")
@pass_app
def dns_add(
    app: AppContext,
    name: str,
    content: str | None,
    record_type: str,
    proxied: bool,
    tunnel_id: str | None,
) -> None:
    """Create a DNS record. A CNAME without CONTENT points at the tunnel."""
    record_type = record_type.upper()
    if content is None:
        if record_type != "CNAME":
            raise click.UsageError(f"CONTENT is required for {record_type} records")
        spec = DnsRecordSpec.tunnel_cname(name, app.tunnel_id(tunnel_id))
        spec = spec.model_copy(update={"proxied": proxied})
    else:
        spec = DnsRecordSpec(
            record_type=record_type,
            name=name,
            content=content,
            proxied=proxied and record_type in ("CNAME", "A", "AAAA"),
        )
    record = app.remote(zone=True).create_dns_record(spec)
    click.echo(f"Created {record.record_type} {record.hostname} → {record.content} ({short_id(record.id)})")


@dns_group.command("delete")
@click.argument("target")
@click.option("--type", "record_type", help="Only records of this type (when TARGET is a name)")
@click.confirmation_option(prompt="Delete the DNS record?")
@pass_app
def dns_delete(app: AppContext, target: str, record_type: str | None) -> None:
    """Delete a DNS record by ID, or every record of a hostname."""
    remote = app.remote(zone=True)
    if "." not in target:
        remote.delete_dns_record(target)
        click.echo(f"Deleted DNS record {target}.")
        return

    hostname = target.strip().rstrip(".").lower()
    records = [
        r
        for r in remote.list_dns_records(name=hostname)
        if record_type is None or r.record_type.upper() == record_type.upper()
    ]
    if not records:
        raise RemoteNotFoundError(f"No DNS record named {hostname}")
    for record in records:
        remote.delete_dns_record(record.id)
        click.echo(f"Deleted {record.record_type} {record.hostname} → {record.content}")


# -- service ------------------------------------------------------------------


@cli.group("service", cls=TunnelGroup)
def service_group() -> None:
    """Control the local cloudflared service."""


@service_group.command("status")
@pass_app
def service_status(app: AppContext) -> None:
    """Show the agent service status."""
    state = app.supervisor().observe()
    color = "green" if state.is_running else "yellow"
    click.echo("Status: " + click.style(state.status.value, fg=color))
    if state.active_tunnel_id:
        click.echo(f"Tunnel: {state.active_tunnel_id}")


@service_group.command("start")
@pass_app
def service_start(app: AppContext) -> None:
    """Start the agent service."""
    app.supervisor().start()
    click.echo("Service started.")


@service_group.command("stop")
@pass_app
def service_stop(app: AppContext) -> None:
    """Stop the agent service."""
    app.supervisor().stop()
    click.echo("Service stopped.")


@service_group.command("restart")
@pass_app
def service_restart(app: AppContext) -> None:
    """Restart the agent service and wait until it runs."""
    app.supervisor().restart()
    click.echo("Service restarted.")


@service_group.command("logs")
@click.option("-n", "--lines", default=50, show_default=True, help="Number of lines")
@pass_app
def service_logs(app: AppContext, lines: int) -> None:
    """Show recent agent logs."""
    click.echo(app.supervisor().logs(lines))


@service_group.command("install")
@click.option("--tunnel", "tunnel_id", help="Tunnel ID (default: configured tunnel)")
@click.option("--reinstall", is_flag=True, help="Replace an existing installation")
@pass_app
def service_install(app: AppContext, tunnel_id: str | None, reinstall: bool) -> None:
    """Install cloudflared as a system service bound to a tunnel."""
    tunnel_id = app.tunnel_id(tunnel_id)
    token = app.remote().get_tunnel_token(tunnel_id)
    app.supervisor().install(token, reinstall=reinstall)
    click.echo(f"Service installed for tunnel {short_id(tunnel_id)}.")


# -- monitoring ---------------------------------------------------------------


def render_metrics(metrics: TunnelMetrics) -> None:
    click.echo(f"Total requests:  {format_count(metrics.total_requests)}")
    click.echo(f"Active streams:  {format_count(metrics.active_streams)}")
    click.echo(f"Request errors:  {format_count(metrics.request_errors)}")
    if metrics.responses:
        click.echo(click.style("Responses:", bold=True))
        for response in metrics.responses:
            click.echo(f"  {response.labels} = {format_count(response.value)}")


@cli.command("stats")
@pass_app
def stats_command(app: AppContext) -> None:
    """Show the running agent's traffic counters."""
    render_metrics(fetch_metrics(app.settings.metrics_url))


@cli.command("monitor")
@click.option("--interval", default=5.0, show_default=True, help="Seconds between refreshes")
@click.option("--count", type=click.IntRange(min=1), help="Stop after this many refreshes")
@pass_app
def monitor_command(app: AppContext, interval: float, count: int | None) -> None:
    """Refresh the agent's counters until interrupted."""
    token = CancellationToken()
    refreshes = 0
    with cancel_on_interrupt(token):
        while not token.cancelled:
            click.clear()
            click.echo(click.style("Live counters (Ctrl+C to exit)", bold=True))
            try:
                metrics = fetch_metrics(app.settings.metrics_url)
            except MetricsUnavailableError as e:
                click.echo(click.style(str(e), fg="yellow"))
            else:
                click.echo(
                    f"Requests: {format_count(metrics.total_requests):>8}   "
                    f"Streams: {format_count(metrics.active_streams):>6}   "
                    f"Errors: {format_count(metrics.request_errors):>6}"
                )
            click.echo(click.style(f"Last update: {time.strftime('%H:%M:%S')}", dim=True))
            refreshes += 1
            if count is not None and refreshes >= count:
                break
            token.wait(interval)
    click.echo("Monitor stopped.")


@cli.command("check")
@pass_app
def check_command(app: AppContext) -> None:
    """Check credentials, API reachability, the agent and the declaration."""
    settings = app.settings
    checks: list[tuple[str, bool | None, str]] = [
        ("API token", bool(settings.api_token), "set" if settings.api_token else "not set"),
        ("Account", bool(settings.account_id), settings.account_id or "not set"),
        ("Zone", bool(settings.zone_id), settings.zone_name or settings.zone_id or "not set"),
    ]

    if settings.is_api_configured:
        try:
            active = app.remote().verify_token()
        except RemoteError as e:
            checks.append(("Token", None, f"inconclusive: {e}"))
        else:
            checks.append(("Token", active, "active" if active else "invalid or expired"))

    supervisor = app.optional_supervisor()
    if supervisor is None:
        checks.append(("Service", None, "not supported on this platform"))
    else:
        try:
            state = supervisor.observe()
        except ServiceError as e:
            checks.append(("Service", False, str(e)))
        else:
            checks.append(("Service", state.is_running, state.status.value))

    try:
        snapshot = app.store().load(missing_ok=True)
    except ConfigError as e:
        checks.append(("Declaration", False, str(e)))
    else:
        checks.append(("Declaration", True, f"{len(snapshot.mappings)} mappings"))

    marks = {True: click.style("✓", fg="green"), False: click.style("✗", fg="red")}
    width = max(len(name) for name, _, _ in checks)
    for name, ok, detail in checks:
        mark = marks.get(ok, click.style("?", fg="yellow"))
        click.echo(f"{mark} {name:<{width}}  {detail}")

    if any(ok is False for _, ok, _ in checks):
        click.get_current_context().exit(ExitCode.FAILURE)


# -- tunnels ------------------------------------------------------------------


@cli.group("tunnel", cls=TunnelGroup)
def tunnel_group() -> None:
    """Manage tunnels of the configured account."""


@tunnel_group.command("list")
@pass_app
def tunnel_list(app: AppContext) -> None:
    """List tunnels."""
    tunnels = app.remote().list_tunnels()
    if not tunnels:
        click.echo("No tunnels.")
        return
    for tunnel in tunnels:
        default = "*" if tunnel.id == app.settings.tunnel_id else " "
        click.echo(f"{default} {tunnel.id}  {tunnel.name}  ({tunnel.status or 'unknown'})")


@tunnel_group.command("create")
@click.argument("name")
@pass_app
def tunnel_create(app: AppContext, name: str) -> None:
    """Create a remotely managed tunnel."""
    tunnel = app.remote().create_tunnel(name)
    click.echo(f"Created tunnel {tunnel.name}: {tunnel.id}")


@tunnel_group.command("delete")
@click.argument("tunnel_id")
@click.confirmation_option(prompt="Delete this tunnel?")
@pass_app
def tunnel_delete(app: AppContext, tunnel_id: str) -> None:
    """Delete a tunnel."""
    app.remote().delete_tunnel(tunnel_id)
    click.echo(f"Deleted tunnel {tunnel_id}.")


@tunnel_group.command("token")
@click.argument("tunnel_id", required=False)
@pass_app
def tunnel_token(app: AppContext, tunnel_id: str | None) -> None:
    """Print a tunnel's run token."""
    click.echo(app.remote().get_tunnel_token(app.tunnel_id(tunnel_id)))


@tunnel_group.command("switch")
@click.argument("tunnel_id")
@click.option(
    "--reinstall-service", is_flag=True, help="Rebind the installed agent service to the tunnel"
)
@pass_app
def tunnel_switch(app: AppContext, tunnel_id: str, reinstall_service: bool) -> None:
    """Make TUNNEL_ID the default tunnel for new mappings."""
    remote = app.remote()
    tunnel = remote.get_tunnel(tunnel_id)
    settings = app.settings.model_copy(update={"tunnel_id": tunnel.id})
    save_settings(settings, app.config_file)
    app.settings = settings
    logger.info("Default tunnel switched", tunnel_id=tunnel.id)
    click.echo(f"Switched to tunnel {tunnel.name} ({short_id(tunnel.id)}).")

    if reinstall_service:
        app.supervisor().install(remote.get_tunnel_token(tunnel.id), reinstall=True)
        click.echo("Service reinstalled.")


# -- access -------------------------------------------------------------------


@cli.group("access", cls=TunnelGroup)
def access_group() -> None:
    """Manage Access applications and policies."""


@access_group.command("list")
@pass_app
def access_list(app: AppContext) -> None:
    """List Access applications."""
    apps = app.remote().list_access_apps()
    if not apps:
        click.echo("No Access applications.")
        return
    for application in apps:
        click.echo(f"{application.id}  {application.name}  {application.domain}")


@access_group.command("create")
@click.argument("name")
@click.option("--domain", required=True, help="Protected hostname")
@click.option("--session-duration", default="24h", show_default=True)
@pass_app
def access_create(app: AppContext, name: str, domain: str, session_duration: str) -> None:
    """Protect DOMAIN with a self-hosted Access application."""
    created = app.remote().create_access_app(
        AccessApplication(name=name, domain=domain, session_duration=session_duration)
    )
    click.echo(f"Created Access application {created.name}: {created.id}")


@access_group.command("delete")
@click.argument("app_id")
@click.confirmation_option(prompt="Delete this Access application?")
@pass_app
def access_delete(app: AppContext, app_id: str) -> None:
    """Delete an Access application."""
    app.remote().delete_access_app(app_id)
    click.echo(f"Deleted Access application {app_id}.")


@access_group.command("policy")
@click.argument("app_id")
@click.option("--name", default="Allow", show_default=True, help="Policy name")
@click.option("--email", "emails", multiple=True, help="Allowed email (repeatable)")
@click.option("--email-domain", "email_domains", multiple=True, help="Allowed email domain")
@click.option("--everyone", is_flag=True, help="Allow everyone")
@pass_app
def access_policy(
    app: AppContext,
    app_id: str,
    name: str,
    emails: tuple[str, ...],
    email_domains: tuple[str, ...],
    everyone: bool,
) -> None:
    """Attach an allow policy to an Access application."""
    include = [AccessPolicyRule.for_email(e) for e in emails]
    include += [AccessPolicyRule.for_email_domain(d) for d in email_domains]
    if everyone:
        include.append(AccessPolicyRule.for_everyone())
    if not include:
        raise click.UsageError("Pass at least one of --email, --email-domain or --everyone")

    policy = app.remote().create_access_policy(app_id, AccessPolicy(name=name, include=include))
    click.echo(f"Created policy {policy.name}: {policy.id}")


# -- credentials --------------------------------------------------------------


@cli.group("config", cls=TunnelGroup)
def config_group() -> None:
    """Manage stored API credentials."""


@config_group.command("set")
@click.option("--api-token", help="API token (prompted when omitted and unset)")
@click.option("--account-id", help="Account ID")
@click.option("--zone-id", help="Zone ID")
@click.option("--zone-name", help="Zone name")
@click.option("--tunnel-id", help="Default tunnel ID")
@click.option("--verify/--no-verify", default=True, help="Verify the token before saving")
@pass_app
def config_set(
    app: AppContext,
    api_token: str | None,
    account_id: str | None,
    zone_id: str | None,
    zone_name: str | None,
    tunnel_id: str | None,
    verify: bool,
) -> None:
    """Store credentials and identifiers."""
    updates = {
        key: value
        for key, value in {
            "api_token": api_token,
            "account_id": account_id,
            "zone_id": zone_id,
            "zone_name": zone_name,
            "tunnel_id": tunnel_id,
        }.items()
        if value
    }
    if "api_token" not in updates and not app.settings.api_token:
        updates["api_token"] = click.prompt("API token", hide_input=True)

    settings = app.settings.model_copy(update=updates)

    if verify and settings.account_id:
        with RemoteStateClient.from_settings(settings) as client:
            if not client.verify_token():
                raise UnauthorizedError("API token is not active")
            if settings.zone_name and not settings.zone_id:
                zones = [z for z in client.list_zones() if z.name == settings.zone_name]
                if not zones:
                    raise SettingsError(f"Zone {settings.zone_name} not found")
                settings = settings.model_copy(update={"zone_id": zones[0].id})

    path = save_settings(settings, app.config_file)
    click.echo(f"Saved credentials to {path}")


@config_group.command("show")
@pass_app
def config_show(app: AppContext) -> None:
    """Show stored credentials with the token masked."""
    settings = app.settings
    click.echo(f"API token:  {mask_token(settings.api_token)}")
    click.echo(f"Account ID: {settings.account_id or 'not set'}")
    click.echo(f"Zone ID:    {settings.zone_id or 'not set'}")
    click.echo(f"Zone name:  {settings.zone_name or 'not set'}")
    click.echo(f"Tunnel ID:  {settings.tunnel_id or 'not set'}")
    click.echo(f"Ingress:    {settings.ingress_path}")


@config_group.command("test")
@pass_app
def config_test(app: AppContext) -> None:
    """Verify the stored API token against the API."""
    app.settings.require_api()
    remote = app.remote()
    if not remote.verify_token():
        raise UnauthorizedError("API token is not active")
    click.echo(click.style("✓", fg="green") + " API token is active.")
    if app.settings.zone_id:
        zones = {z.id: z.name for z in remote.list_zones()}
        if app.settings.zone_id not in zones:
            raise SettingsError(f"Zone {app.settings.zone_id} is not visible to this token")
        click.echo(click.style("✓", fg="green") + f" Zone {zones[app.settings.zone_id]} reachable.")


@config_group.command("clear")
@click.confirmation_option(prompt="Delete stored credentials?")
@pass_app
def config_clear(app: AppContext) -> None:
    """Delete the credential file."""
    if clear_settings(app.config_file):
        click.echo("Credentials cleared.")
    else:
        click.echo("No stored credentials.")


def main() -> None:
    cli(prog_name="tunnel")


if __name__ == "__main__":
    main()
