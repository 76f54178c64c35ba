import csv
import json
import os
import time

import typer
from rich.table import Table

from pingsense.analysis.icmp_analyzer import ICMPAnalyzer
from pingsense.config import Settings
from pingsense.icmp.packet import ICMPPacket
from pingsense.intelligence.anomaly_detector import LatencyAnomalyDetector
from pingsense.log import console, setup_logging
from pingsense.probe.errors import ICMPErrors, ResolutionError
from pingsense.probe.pinger import Pinger
from pingsense.storage.database import PingSenseDB

app = typer.Typer(help="PingSense - ICMP reachability probes and round trip statistics")

settings = Settings.from_env()
icmp_analyzer = ICMPAnalyzer()

ERROR_STYLES = {
    ICMPErrors.Success: "green",
    ICMPErrors.Timeout: "yellow",
    ICMPErrors.Mixed: "yellow",
}


def build_pinger():
    return Pinger(settings)


def open_db():
    return PingSenseDB(settings.db_path)


def styled(error):
    style = ERROR_STYLES.get(error, "red")
    return f"[{style}]{error.name}[/{style}]"


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="DEBUG/INFO/WARNING/ERROR"),
    db_path: str = typer.Option(None, "--db", help="sqlite file for the session history"),
):
    if log_level:
        settings.log_level = log_level
    if db_path:
        settings.db_path = db_path
    setup_logging(settings.log_level)


def summary_table(title, rows):
    table = Table(title=title)
    table.add_column("Target", style="cyan")
    table.add_column("Result")
    table.add_column("Replies", justify="right")
    table.add_column("Loss", justify="right", style="magenta")
    table.add_column("min/avg/max/stddev (ms)", justify="right", style="green")

    for target, results in rows:
        if isinstance(results, ResolutionError):
            table.add_row(str(target), styled(ICMPErrors.DNSError), "-", "-", "-")
            continue
        times = "-"
        if results.number_of_replies:
            stats = results.to_dict()
            times = f"{stats['min_ms']:.2f}/{stats['avg_ms']:.2f}/{stats['max_ms']:.2f}/{stats['stddev_ms']:.2f}"
        table.add_row(
            str(target),
            styled(results.error),
            f"{results.number_of_replies}/{len(results.results)}",
            f"{results.packet_loss_percent:.0f}%",
            times,
        )
    return table


@app.command()
def ping(
    target: str = typer.Argument(..., help="Hostname or IP address"),
    count: int = typer.Option(None, "--count", "-c", help="Number of echo requests"),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Seconds to wait for each reply"),
    ttl: int = typer.Option(None, "--ttl", help="Outgoing time to live"),
    identifier: int = typer.Option(None, "--id", help="ICMP identifier (random by default)"),
    sequence: int = typer.Option(0, "--seq", help="First sequence number"),
    data: str = typer.Option(None, "--data", "-d", help="Payload text (random by default)"),
    save: bool = typer.Option(True, "--save/--no-save", help="Save to the DB"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every probe"),
):
    """
        pingsense ping 8.8.8.8
        pingsense ping example.org -c 5 -t 1 --no-save
    """
    pinger = build_pinger()

    def show(seq, total, result):
        if verbose:
            console.print(f"  seq={seq} {styled(result.error)} time={result.runtime_ms:.2f} ms")

    console.print(f"[bold cyan]PING {target}[/bold cyan]")
    try:
        address = pinger.resolve(target)
        results = pinger.ping(
            address,
            repetitions=count,
            timeout=timeout,
            identifier=identifier,
            sequence_start=sequence,
            test_data=data,
            ttl=ttl,
            on_result=show,
        )
    except ResolutionError as e:
        console.print(f"[bold red]{e}[/bold red]")
        raise typer.Exit(code=2)
    except ValueError as e:
        console.print(f"[bold red]Invalid option: {e}[/bold red]")
        raise typer.Exit(code=2)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted![/yellow]")
        raise typer.Exit(code=130)

    console.print(summary_table("Ping Summary", [(target, results)]))

    if save:
        db = open_db()
        try:
            db.insert_session(target, address, results)
        finally:
            db.close()

    if not results.success:
        raise typer.Exit(code=1)


@app.command()
def multi(
    targets: list[str] = typer.Argument(..., help="Hostnames or IP addresses"),
    count: int = typer.Option(None, "--count", "-c", help="Number of echo requests per target"),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Seconds to wait for each reply"),
    workers: int = typer.Option(None, "--workers", "-w", help="Concurrent sessions"),
    save: bool = typer.Option(True, "--save/--no-save", help="Save to the DB"),
):
    """
        pingsense multi 1.1.1.1 8.8.8.8 example.org -c 3
    """
    pinger = build_pinger()

    with console.status(f"[bold green]Pinging {len(targets)} targets..."):
        outcomes = pinger.ping_many(targets, workers=workers, repetitions=count, timeout=timeout)

    console.print(summary_table("Ping Summary", outcomes.items()))

    if save:
        db = open_db()
        try:
            for target, results in outcomes.items():
                if not isinstance(results, ResolutionError):
                    db.insert_session(target, results.address, results)
        finally:
            db.close()

    if not all(not isinstance(r, ResolutionError) and r.success for r in outcomes.values()):
        raise typer.Exit(code=1)


@app.command()
def history(
    target: str = typer.Option(None, "--target", help="Only sessions for this target"),
    limit: int = typer.Option(10, "--limit", "-l", help="number of results"),
):
    """
    Flags:
        --target: only show one target
        --limit/-l: number of sessions
"""
    db = open_db()
    try:
        sessions = db.get_sessions(limit=limit, filters={'target': target} if target else None)
    finally:
        db.close()

    if not sessions:
        console.print("[dim]No sessions found for the matching criteria[/dim]")
        return

    table = Table(title=f"Ping History (showing {len(sessions)})")
    table.add_column("ID", style="dim")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Target", style="yellow")
    table.add_column("Result")
    table.add_column("Loss", justify="right", style="magenta")
    table.add_column("avg (ms)", justify="right", style="green")

    for session in sessions:
        timestamp = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(session['timestamp']))
        avg = f"{session['avg_ms']:.2f}" if session['number_of_replies'] else "-"
        table.add_row(
            str(session['id']),
            timestamp,
            session['target'],
            session['error'],
            f"{session['packet_loss_percent']:.0f}%",
            avg,
        )

    console.print(table)


@app.command()
def stats():
    """Aggregated statistics of all stored sessions"""
    db = open_db()
    try:
        db_stats = db.get_statistics()
    finally:
        db.close()

    summary = Table(title="Summary", show_header=False)
    summary.add_column("Metric", style="cyan")
    summary.add_column("value", style="yellow")
    summary.add_row("Sessions", f"{db_stats['total_sessions']:,}")
    summary.add_row("Probes", f"{db_stats['total_probes']:,}")
    summary.add_row("Replies", f"{db_stats['total_replies']:,}")
    console.print(summary)

    total = db_stats['total_probes']
    if total:
        table = Table(title="Probe Outcomes")
        table.add_column("Outcome", style="cyan")
        table.add_column("Count", justify="right", style="magenta")
        table.add_column("Percentage", justify="right", style="green")
        for error, count in db_stats['error_distribution'].items():
            table.add_row(error, str(count), f"{count / total * 100:.1f}%")
        console.print(table)

    if db_stats['targets']:
        table = Table(title="Targets")
        table.add_column("Target", style="cyan")
        table.add_column("Sessions", justify="right")
        table.add_column("Avg loss", justify="right", style="magenta")
        table.add_column("Avg rtt (ms)", justify="right", style="green")
        for row in db_stats['targets']:
            rtt = f"{row['avg_rtt_ms']:.2f}" if row['avg_rtt_ms'] is not None else "-"
            table.add_row(row['target'], str(row['sessions']), f"{row['avg_loss']:.0f}%", rtt)
        console.print(table)


@app.command()
def export(
    format: str = typer.Argument(..., help="export format (json/csv)"),
    output: str = typer.Argument(..., help="output file"),
    limit: int = typer.Option(1000, "--limit", "-l", help="Number of sessions"),
):
    """
        pingsense export json sessions.json
        pingsense export csv sessions.csv --limit 100
"""
    db = open_db()
    try:
        sessions = db.get_sessions(limit=limit)
        if format.lower() == 'json':
            for session in sessions:
                session['probes'] = db.get_probes(session['id'])
    finally:
        db.close()

    if not sessions:
        console.print("[red]No sessions to export![/red]")
        return

    if format.lower() == 'json':
        with open(output, 'w') as f:
            json.dump(sessions, f, indent=2, default=str)
    elif format.lower() == 'csv':
        with open(output, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=sessions[0].keys())
            writer.writeheader()
            writer.writerows(sessions)
    else:
        console.print(f"[red]Unknown format: {format}[/red]")
        console.print("Supported formats: json, csv")
        raise typer.Exit(code=2)

    console.print(f"[bold green]Exported {len(sessions)} sessions to {output}[/bold green]")
    console.print(f"   File size: {os.path.getsize(output):,} bytes")


@app.command()
def decode(
    packet: str = typer.Argument(..., help="hex bytes of an ICMP packet, with or without IPv4 header"),
):
    """
        pingsense decode 0800f7ff00000000
    """
    cleaned = packet.replace(" ", "").replace(":", "")
    try:
        data = bytes.fromhex(cleaned)
    except ValueError:
        console.print("[bold red]Not a hex string[/bold red]")
        raise typer.Exit(code=2)

    icmp_bytes = icmp_analyzer.unwrap(data) if data[:1] and data[0] >> 4 == 4 else None
    decoded = ICMPPacket.try_decode(icmp_bytes if icmp_bytes is not None else data)
    info = icmp_analyzer.analyze(decoded)

    if info is None:
        console.print("[bold red]Could not decode an ICMP packet[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title=f"ICMP {info['type']}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("Type", str(info['type_id']))
    table.add_row("Code", str(info['code']))
    checksum_state = "[green]valid[/green]" if info['checksum_valid'] else "[red]invalid[/red]"
    table.add_row("Checksum", f"0x{info['checksum']:04x} ({checksum_state})")

    for key, label in (('id', "Identifier"), ('sequence', "Sequence"), ('next_hop_mtu', "Next hop MTU"),
                       ('gateway', "Gateway"), ('pointer', "Pointer")):
        if info[key] is not None:
            table.add_row(label, str(info[key]))
    if info['data'] is not None:
        table.add_row("Data", f"{len(info['data'])} bytes {info['data'][:32]!r}")

    embedded = info['embedded']
    if embedded:
        table.add_row("Quoted datagram", f"{embedded['src_ip']} → {embedded['dst_ip']} ({embedded['protocol_name']})")
        if 'echo_id' in embedded:
            table.add_row("Quoted echo", f"id={embedded['echo_id']} seq={embedded['echo_sequence']}")

    console.print(table)


@app.command()
def train(
    limit: int = typer.Option(1000, "--limit", "-l", help="Number of stored sessions to learn from"),
):
    """Train the latency anomaly model on stored sessions"""
    db = open_db()
    try:
        sessions = db.get_sessions(limit=limit)
    finally:
        db.close()

    detector = LatencyAnomalyDetector(settings.model_path, load=False)
    for session in sessions:
        detector.collect_baseline(session)

    with console.status("[bold green]Training Isolation Forest..."):
        success, message = detector.train_model()

    if success:
        console.print(f"[green]✓[/green] {message}")
    else:
        console.print(f"[red]✗[/red] {message}")
        raise typer.Exit(code=1)


@app.command()
def detect(
    limit: int = typer.Option(20, "--limit", "-l", help="Number of recent sessions to check"),
):
    """Report alerts for recent sessions"""
    db = open_db()
    try:
        sessions = db.get_sessions(limit=limit)
    finally:
        db.close()

    detector = LatencyAnomalyDetector(settings.model_path)
    alerts = [alert for session in sessions for alert in detector.analyze(session)]

    if not alerts:
        console.print("[green]No alerts[/green]")
        return

    table = Table(title=f"Alerts ({len(alerts)})")
    table.add_column("Severity", style="red")
    table.add_column("Type", style="yellow")
    table.add_column("Description")
    for alert in alerts:
        table.add_row(alert['severity'], alert['type'], alert['description'])
    console.print(table)


if __name__ == "__main__":
    app()
