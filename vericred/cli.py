"""
VeriCred CLI - corpus imports, verification and ledger status

Runs the same orchestrator the API uses, against the configured corpus
database and ledger backend.
"""
import json
from pathlib import Path

import click
import httpx
from rich.console import Console
from rich.table import Table

from vericred.audit import SQLiteAuditLog
from vericred.models import Identity
from vericred.orchestrator import FingerprintSelection, VerificationOrchestrator
from vericred.settings import get_config, reload_config
from vericred.utils import VeriCredError, get_logger, retry_with_backoff, setup_logging

console = Console()
logger = get_logger(__name__)


def _orchestrator() -> VerificationOrchestrator:
    return VerificationOrchestrator.from_settings(get_config())


@retry_with_backoff(max_retries=3, initial_delay=0.5, retry_on=(httpx.TransportError,))
def _fetch_audit_events(api_url: str, api_key: str, params: dict) -> dict:
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    resp = httpx.get(f"{api_url.rstrip('/')}/api/admin/audit-events", params=params, headers=headers, timeout=10)
    resp.raise_for_status()
    return resp.json()


# ═══════════════════════════════════════════════════════════════════
# MAIN CLI GROUP
# ═══════════════════════════════════════════════════════════════════

@click.group()
@click.version_option(version='0.1.0')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='YAML settings file')
def main(config_path):
    """
    VeriCred - credential verification and attestation

    Import an administrator corpus, fingerprint documents, and verify
    claims against both with ledger-backed attestation.
    """
    cfg = reload_config(config_path) if config_path else get_config()
    setup_logging(cfg.log_level, str(cfg.log_file) if cfg.log_file else None)


# ═══════════════════════════════════════════════════════════════════
# IMPORT COMMANDS
# ═══════════════════════════════════════════════════════════════════

@main.command('import-csv')
@click.argument('csv_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--uploaded-by', default='admin', help='Recorded as the uploader')
def import_csv(csv_path, uploaded_by):
    """Import a name,institute,percentage CSV into the corpus and ledger"""
    console.print(f"\n[bold blue]Importing corpus:[/bold blue] {csv_path}")

    orchestrator = _orchestrator()
    try:
        with console.status("[bold green]Normalizing and registering rows..."):
            records = orchestrator.import_corpus_csv(
                Path(csv_path).read_text(encoding='utf-8'), uploaded_by=uploaded_by
            )
    except VeriCredError as e:
        console.print(f"\n[red]✗ Error: {e}[/red]")
        raise SystemExit(1)
    finally:
        orchestrator.ledger.close()

    table = Table(title=f"Imported {len(records)} record(s)")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Institute")
    table.add_column("Score", style="magenta")
    table.add_column("Hash", style="dim")
    for record in records[:25]:
        table.add_row(str(record.record_id), record.name, record.institute,
                      record.score, record.normalized_hash[:18] + "…")
    console.print(table)
    if len(records) > 25:
        console.print(f"[dim]… and {len(records) - 25} more[/dim]")
    console.print("\n[green]✓ Import complete[/green]")


@main.command('import-docs')
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--uploaded-by', default='admin', help='Recorded as the uploader')
def import_docs(paths, uploaded_by):
    """Fingerprint administrator documents and register their hashes"""
    console.print(f"\n[bold blue]Importing {len(paths)} document(s)[/bold blue]")

    files = [(Path(p).name, Path(p).read_bytes()) for p in paths]
    orchestrator = _orchestrator()
    try:
        with console.status("[bold green]Fingerprinting..."):
            fingerprints = orchestrator.import_document_set(files, uploaded_by=uploaded_by)
    except VeriCredError as e:
        console.print(f"\n[red]✗ Error: {e}[/red]")
        raise SystemExit(1)
    finally:
        orchestrator.ledger.close()

    table = Table(title="Document fingerprints")
    table.add_column("File", style="cyan")
    table.add_column("Binary hash")
    table.add_column("Text hash")
    for fp in fingerprints:
        table.add_row(fp.source_name, fp.binary_hash, fp.text_hash or "[dim]none[/dim]")
    console.print(table)
    console.print("\n[green]✓ Import complete[/green]")


# ═══════════════════════════════════════════════════════════════════
# VERIFICATION COMMANDS
# ═══════════════════════════════════════════════════════════════════

@main.command()
@click.argument('document', required=False, type=click.Path(exists=True, dir_okay=False))
@click.option('--name', help='Claimed holder name')
@click.option('--institute', help='Claimed issuing institute')
@click.option('--percentage', help='Claimed score')
@click.option('--fingerprint', 'fp', help='Verify a known fingerprint instead of a document')
@click.option('--wallet', help='Token owner wallet')
@click.option('--email', help='Token owner account email')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw outcome as JSON')
def verify(document, name, institute, percentage, fp, wallet, email, as_json):
    """Verify a document, typed fields, or a fingerprint and mint on success"""
    identity = Identity(wallet=wallet, email=email)
    orchestrator = _orchestrator()
    if email:
        orchestrator.identities.add(email, wallet=wallet)

    try:
        with console.status("[bold green]Verifying..."):
            if fp:
                outcome = orchestrator.admin_verify(FingerprintSelection(fp), identity, actor="cli")
            else:
                data = Path(document).read_bytes() if document else None
                outcome = orchestrator.verify_document(
                    data,
                    identity,
                    filename=Path(document).name if document else "document",
                    fields={"name": name, "institute": institute, "score": percentage},
                )
    except VeriCredError as e:
        console.print(f"\n[red]✗ {type(e).__name__}: {e}[/red]")
        raise SystemExit(1)
    finally:
        orchestrator.ledger.close()

    if as_json:
        click.echo(json.dumps(outcome.to_dict(), indent=2))
        return

    table = Table(title="Verification outcome")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Verified", "yes" if outcome.verified else "no")
    table.add_row("Mode", outcome.mode)
    table.add_row("State", outcome.state.value)
    table.add_row("Fingerprint", outcome.fingerprint or "-")
    if outcome.token:
        table.add_row("Token ID", str(outcome.token.token_id))
        table.add_row("Owner", outcome.token.owner_identity)
    if outcome.matched_record:
        record = outcome.matched_record
        table.add_row("Matched record", f"#{record.record_id} {record.name} / {record.institute} / {record.score}")
    match = outcome.diagnostics.get("match")
    if match:
        table.add_row("Match score", f"{match['match_score']:.3f} ({match['accepted_by']})")
    table.add_row("States", " → ".join(outcome.diagnostics.get("states", [])))
    console.print(table)

    if outcome.verified:
        console.print("\n[green]✓ Verified[/green]")
    else:
        console.print("\n[yellow]✗ No matching record[/yellow]")
        raise SystemExit(2)


@main.command()
@click.argument('document', type=click.Path(exists=True, dir_okay=False))
def fingerprint(document):
    """Show the hashes and extracted fields of a document"""
    orchestrator = _orchestrator()
    try:
        preview = orchestrator.preview_fields(Path(document).read_bytes(), Path(document).name)
    finally:
        orchestrator.ledger.close()

    table = Table(title=Path(document).name)
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Binary hash", preview["fingerprint"]["binary_hash"])
    table.add_row("Text hash", preview["fingerprint"]["text_hash"] or "none")
    for key, value in preview["fields"].items():
        source = preview["diagnostics"]["field_sources"].get(key, "")
        table.add_row(key.capitalize(), f"{value or '-'} [dim]{source}[/dim]")
    console.print(table)


# ═══════════════════════════════════════════════════════════════════
# AUDIT & STATUS COMMANDS
# ═══════════════════════════════════════════════════════════════════

@main.command()
@click.option('--api-url', default=None, help='Query a running VeriCred API instead of the local audit database')
@click.option('--api-key', envvar='VERICRED_API_KEY', default='', help='Admin bearer token')
@click.option('--unread', is_flag=True, help='Only unread events')
@click.option('--kind', help='Filter by event kind')
@click.option('--limit', default=20, help='Number of events')
def audit(api_url, api_key, unread, kind, limit):
    """List audit events from the audit database or a running API server"""
    if api_url:
        params = {"unread_only": str(unread).lower(), "limit": limit}
        if kind:
            params["kind"] = kind
        try:
            body = _fetch_audit_events(api_url, api_key, params)
        except httpx.HTTPError as e:
            console.print(f"\n[red]✗ Could not fetch audit events: {e}[/red]")
            raise SystemExit(1)
    else:
        try:
            log = SQLiteAuditLog(get_config().audit_db_path)
            events = log.list_events(unread_only=unread, kind=kind, limit=limit)
            body = {
                "total": log.count(kind=kind),
                "unread": log.count(kind=kind, unread_only=True),
                "events": [e.to_dict() for e in events],
            }
        except VeriCredError as e:
            console.print(f"\n[red]✗ Could not read audit events: {e}[/red]")
            raise SystemExit(1)

    table = Table(title=f"Audit events ({body['unread']} unread of {body['total']})")
    table.add_column("When", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Message")
    table.add_column("Read")
    for event in body["events"]:
        table.add_row(event["created_at"], event["kind"], event["message"], "✓" if event["read"] else "")
    console.print(table)


@main.command()
def status():
    """Show configuration, corpus and ledger status"""
    console.print("\n[bold blue]VeriCred Status[/bold blue]\n")
    config = get_config()

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Ledger mode", config.ledger_mode)
    table.add_row("Ledger", config.ledger_url or str(config.ledger_store_path))
    table.add_row("Corpus DB", str(config.corpus_db_path))
    table.add_row("OCR", "enabled" if config.ocr_enabled else "disabled")
    table.add_row("Fuzzy threshold", f"{config.fuzzy_threshold:.2f}")
    table.add_row("Idempotent mint", str(config.mint_idempotent))
    table.add_row("Log Level", config.log_level)
    console.print(table)

    orchestrator = _orchestrator()
    try:
        counts = Table(title="Counts")
        counts.add_column("Item", style="cyan")
        counts.add_column("Count", style="magenta")
        counts.add_row("Corpus records", str(orchestrator.corpus.count_records()))
        counts.add_row("Admin documents", str(orchestrator.corpus.count_documents()))
        try:
            counts.add_row("Registered fingerprints", str(orchestrator.ledger.registered_count()))
            counts.add_row("Last token ID", str(orchestrator.ledger.last_token_id()))
        except VeriCredError as e:
            counts.add_row("Ledger", f"[red]unavailable: {e}[/red]")
        console.print(counts)
    finally:
        orchestrator.ledger.close()


@main.command()
@click.option('--host', default='127.0.0.1', help='Bind address')
@click.option('--port', default=8000, help='Bind port')
def serve(host, port):
    """Run the HTTP API with uvicorn"""
    import uvicorn

    console.print(f"\n[bold blue]VeriCred API[/bold blue] on http://{host}:{port}")
    uvicorn.run("vericred.api.main:app", host=host, port=port, log_level=get_config().log_level.lower())


if __name__ == '__main__':
    main()
