from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

import typer
from rich import print
from rich.console import Console
from rich.table import Table

from .db import SessionLocal
from .errors import PortProbeError
from .init_db import init_db
from .plugins.naabu import run_naabu_hosts
from .plugins.shodan import client_from_env
from .services.ip_info_service import build_ip_info
from .services.ip_intel_service import collect_intelligence
from .services.port_service import ingest_naabu_results
from .services.session_service import create_scan_session, list_scan_sessions
from .services.stats_service import build_statistics

app = typer.Typer(no_args_is_help=True)
console = Console()


@app.callback()
def cli(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    """reconboard: recon result statistics and IP intelligence."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()


def _read_targets(path: Path) -> list[str]:
    if not path.exists():
        raise typer.BadParameter(f"File not found: {path}")
    targets = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            targets.append(line)
    return targets


@app.command("init-db")
def init_db_cmd():
    """Create the database tables."""
    # tables are created by the callback already
    print("[green]Database ready[/green]")


# -------------------------
# Scan session commands
# -------------------------
session_app = typer.Typer(no_args_is_help=True)
app.add_typer(session_app, name="session")


@session_app.command("init")
def session_init(
    company: str = typer.Option(..., "--company", help="Company name"),
    domain: str = typer.Option(..., "--domain", help="Main domain of the target"),
    logo: str = typer.Option("", "--logo", help="Path to the company logo"),
    notes: str = typer.Option("", "--notes"),
):
    """Start a new scan session for a target."""
    with SessionLocal() as s:
        try:
            scan = create_scan_session(s, company, domain, logo_path=logo, notes=notes)
        except ValueError as e:
            raise typer.BadParameter(str(e))
        print(f"[green]Scan session created[/green] id={scan.id} company={scan.company_name} domain={scan.main_domain}")


@session_app.command("list")
def session_list():
    with SessionLocal() as s:
        scans = list_scan_sessions(s)
    if not scans:
        print("[yellow]No scan sessions yet.[/yellow]")
        return
    for sc in scans:
        print(f"- id={sc['id']} status={sc['status']} company={sc['company_name']} domain={sc['main_domain']} started={sc['start_time']}")


# -------------------------
# Reporting commands
# -------------------------
@app.command("stats")
def stats(as_json: bool = typer.Option(False, "--json", help="Print the raw report")):
    """Show the statistics report."""
    with SessionLocal() as s:
        report = build_statistics(s)

    if as_json:
        print(json.dumps(report, indent=2, ensure_ascii=False))
        return

    print(f"[bold]results[/bold]={report['results']} headers={report['headers']} "
          f"network_logs={report['networklogs']} console_logs={report['consolelogs']} dbsize={report['dbsize']}")
    target = report.get("target_info")
    if target:
        print(f"[bold]target[/bold] {target['company_name']} ({target['main_domain']}) status={target['scan_status']}")

    domains = report["domain_stats"]
    table = Table(title=f"Apex domains ({domains['total_domains']} observations)")
    table.add_column("apex")
    table.add_column("count", justify="right")
    table.add_column("subdomains", justify="right")
    for group in domains["apex_domains"]:
        table.add_row(group["domain"], str(group["count"]), str(len(group["subdomains"])))
    console.print(table)

    ips = report["ip_stats"]
    table = Table(title=f"IP addresses ({ips['unique_ips']} unique)")
    table.add_column("ip")
    table.add_column("domains", justify="right")
    table.add_column("first seen")
    table.add_column("last seen")
    for group in ips["ip_list"]:
        table.add_row(group["ip_address"], str(group["domain_count"]), group["first_seen"], group["last_seen"])
    console.print(table)


ip_app = typer.Typer(no_args_is_help=True)
app.add_typer(ip_app, name="ip")


@ip_app.command("show")
def ip_show(ip: str):
    """Show everything known about an IP, enriching it when needed."""
    ip = ip.strip()
    if not ip:
        raise typer.BadParameter("IP address is required.")
    with SessionLocal() as s:
        report = build_ip_info(s, ip)
    print(json.dumps(report, indent=2, ensure_ascii=False))


# -------------------------
# Collection commands
# -------------------------
intel_app = typer.Typer(no_args_is_help=True)
app.add_typer(intel_app, name="intel")


@intel_app.command("collect")
def intel_collect(
    hosts_file: Path,
    scan_session_id: int = typer.Option(None, "--scan-session-id"),
    rate_limit: int = typer.Option(60, "--rate-limit", help="Requests per minute"),
):
    """Gather IP intelligence for every host in a file."""
    targets = _read_targets(hosts_file)
    if not targets:
        raise typer.BadParameter("No hosts found in the input file.")

    shodan = client_from_env()
    if shodan is None:
        print("[yellow]No usable Shodan API key, using geolocation and port probe only[/yellow]")

    with SessionLocal() as s:
        summary = collect_intelligence(
            s,
            targets,
            shodan=shodan,
            scan_session_id=scan_session_id,
            rate_limit_per_minute=rate_limit,
        )
    print(
        f"[green]Done[/green] processed={summary.processed} saved={summary.saved} "
        f"skipped={summary.skipped} errors={summary.errors} fallback_used={summary.fallback_used}"
    )
    for host in summary.unresolved:
        print(f"  [yellow]unresolved[/yellow] {host}")


ports_app = typer.Typer(no_args_is_help=True)
app.add_typer(ports_app, name="ports")


@ports_app.command("ingest")
def ports_ingest(
    results_file: Path,
    scan_session_id: int = typer.Option(None, "--scan-session-id"),
):
    """Store naabu JSON-lines output as port records."""
    if not results_file.exists():
        raise typer.BadParameter(f"File not found: {results_file}")
    with results_file.open(encoding="utf-8") as f, SessionLocal() as s:
        saved, skipped = ingest_naabu_results(s, f, scan_session_id)
    print(f"[green]Ports stored[/green] saved={saved} skipped={skipped}")


@ports_app.command("scan")
def ports_scan(
    hosts_file: Path,
    top_ports: str = typer.Option("100", "--top-ports", help="Top ports to scan [100,1000,full]"),
    custom_ports: str = typer.Option("", "--custom-ports", help="e.g. 22,80,443,8080"),
    rate: int = typer.Option(500, "--rate", help="Packets per second"),
    threads: int = typer.Option(25, "--threads"),
    timeout: int = typer.Option(1000, "--timeout", help="Probe timeout in milliseconds"),
    exclude_cdn: bool = typer.Option(True, "--exclude-cdn/--include-cdn", help="Only scan 80,443 on CDN/WAF hosts"),
    output: Path = typer.Option(None, "--output", help="Keep the naabu JSON results in this file"),
    scan_session_id: int = typer.Option(None, "--scan-session-id"),
):
    """Run naabu over a host list and store the open ports."""
    if not hosts_file.exists():
        raise typer.BadParameter(f"File not found: {hosts_file}")

    with tempfile.TemporaryDirectory(prefix="reconboard-naabu-") as tmp:
        out_file = output or Path(tmp) / "naabu_results.json"
        try:
            run_naabu_hosts(
                hosts_file,
                out_file,
                top_ports=top_ports,
                custom_ports=custom_ports,
                rate=rate,
                threads=threads,
                timeout_ms=timeout,
                exclude_cdn=exclude_cdn,
            )
        except PortProbeError as e:
            print(f"[red]naabu failed:[/red] {e}")
            raise typer.Exit(code=1)

        with out_file.open(encoding="utf-8") as f, SessionLocal() as s:
            saved, skipped = ingest_naabu_results(s, f, scan_session_id)
    print(f"[green]Ports stored[/green] saved={saved} skipped={skipped}")


@app.command("serve")
def serve(
    host: str = typer.Option(os.getenv("RECON_HOST", "127.0.0.1"), "--host"),
    port: int = typer.Option(int(os.getenv("RECON_PORT", "7171")), "--port"),
):
    """Run the web API."""
    import uvicorn

    uvicorn.run("reconboard.api_main:app", host=host, port=port)


def main():
    app()


if __name__ == "__main__":
    main()
