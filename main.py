#!/usr/bin/env python3
"""
PO Processor CLI entry point.

Usage examples:
  python main.py check                                  # Verify setup (LLM, database)
  python main.py ingest po.pdf --type po                # Extract and store a customer PO
  python main.py ingest rfq.png --type inquiry          # Photos work with vision models
  python main.py list --kind quotation --status sent
  python main.py show inquiry <id>
  python main.py transition inquiry <id> review
  python main.py quote <inquiry-id> --price MAT-001=12.50 --price "V-Belt B52=40"
  python main.py accept <quotation-id> --po-number PO-7781
  python main.py order <po-id> --supplier "Gulf Bearings LLC"
  python main.py receive <order-id> --type commercial_invoice
  python main.py render quotation <quotation-id>        # Quotation PDF
  python main.py fetch-mail --type po                   # Ingest PO attachments from the inbox
  python main.py forecast MAT-001
  python main.py materials
"""
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import NoReturn, Optional

import click

from config import Config
from models import ENTITY_TYPES, SCHEMA_TAGS, Entity
from models.delivery_document import DOCUMENT_TYPES
from pipeline.currency import format_amount
from pipeline.database import current_status
from pipeline.errors import PipelineError
from pipeline.processor import DocumentProcessor
from pipeline.workflow import available_actions

KINDS = sorted(ENTITY_TYPES)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("pdfminer").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def _processor(ctx: click.Context) -> DocumentProcessor:
    if "processor" not in ctx.obj:
        ctx.obj["processor"] = DocumentProcessor(ctx.obj["config"])
    return ctx.obj["processor"]


def _fail(error: Exception) -> NoReturn:
    click.echo(f"\n✗ {type(error).__name__}: {error}", err=True)
    sys.exit(1)


def _parse_day(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise click.BadParameter(f"{value!r} is not a YYYY-MM-DD date")


def _echo_entity(entity: Entity) -> None:
    click.echo()
    click.echo(f"  {entity.kind}  {entity.number}")
    click.echo(f"  id:       {entity.id}")
    click.echo(f"  party:    {entity.party}")
    click.echo(f"  status:   {current_status(entity)}")
    total = getattr(entity, "total_amount", None)
    if total is not None:
        click.echo(f"  total:    {format_amount(total, getattr(entity, 'currency', None))}")
    actions = available_actions(entity)
    click.echo(f"  actions:  {', '.join(actions) if actions else '(none)'}")
    click.echo()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """PO Processor: extract business documents and run the order workflow."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj.setdefault("config", Config())
    _setup_logging(verbose)


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.option("--model", default=None, help="LLM model name to check")
@click.pass_context
def check(ctx: click.Context, model: str | None) -> None:
    """Verify that the LLM backend and the database are ready."""
    config: Config = ctx.obj["config"]
    if model:
        config.llm_model = model

    status = _processor(ctx).check_setup()

    click.echo("\n=== Pipeline Setup Check ===\n")

    llm = status["llm"]
    click.echo(f"  LLM endpoint:  {config.llm_base_url}")
    if llm["ok"]:
        model_status = "✓ available" if llm.get("model_available") else "✗ NOT found"
        click.echo(f"  Model '{config.llm_model}':  {model_status}")
        if not llm.get("model_available"):
            available = llm.get("available_models", [])
            if available:
                click.echo(f"  Available models: {', '.join(available[:10])}")
            click.echo(f"  → Check LLM_MODEL matches a model at {config.llm_base_url}")
    else:
        click.echo(f"  LLM backend:   ✗ NOT reachable ({llm.get('error')})")
        click.echo("  → Check LLM_BASE_URL, LLM_API_KEY in your .env")

    click.echo()
    pdf = status["pdfplumber"]
    click.echo(f"  pdfplumber:    {'✓' if pdf['ok'] else '✗ ' + pdf['error']}")

    db = status["database"]
    tick = "✓" if db["ok"] else "✗"
    click.echo(f"  Database:      {tick}  {db['path']}")
    for kind, count in sorted(db["records"].items()):
        click.echo(f"     {kind:<20} {count}")
    click.echo()

    if not (llm["ok"] and pdf["ok"] and db["ok"]):
        sys.exit(1)


# --------------------------------------------------------------------
# ingest command
# --------------------------------------------------------------------

@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--type", "-t", "schema", required=True, type=click.Choice(SCHEMA_TAGS),
              help="Kind of document being uploaded")
@click.option("--model", "-m", default=None, help="LLM model (default: LLM_MODEL or llama3.2)")
@click.option("--no-type-check", is_flag=True, help="Skip the document type check")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.pass_context
def ingest(ctx: click.Context, file: str, schema: str, model: str | None, as_json: bool, no_type_check: bool) -> None:
    """Extract FILE (PDF or image), validate it and store the record."""
    if model:
        ctx.obj["config"].llm_model = model
    if no_type_check:
        ctx.obj["config"].verify_document_type = False
    try:
        result = _processor(ctx).ingest(Path(file), schema)
    except PipelineError as e:
        _fail(e)

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    elif result.ok:
        record = result.record or {}
        click.echo()
        click.echo(f"  Stored:      {result.entity_kind} {result.document_number}")
        click.echo(f"  Id:          {result.entity_id}")
        if "total_amount" in record:
            click.echo(f"  Total:       {format_amount(record['total_amount'], record.get('currency'))}")
        click.echo(f"  Took:        {result.processing_time_seconds:.2f}s ({result.llm_model_used})")
        click.echo()
    else:
        click.echo(f"\n  ✗ {Path(file).name} was not stored ({len(result.issues)} issue(s)):")
        for issue in result.issues:
            value = f"  [got {issue.value!r}]" if issue.value is not None else ""
            click.echo(f"    - {issue.field} ({issue.problem}): {issue.description}{value}")
        click.echo()

    if not result.ok:
        sys.exit(1)


@cli.command("fetch-mail")
@click.option("--type", "-t", "schema", default="both", show_default=True,
              type=click.Choice(["inquiry", "po", "both"]),
              help="Which emails to pick up, by subject")
@click.pass_context
def fetch_mail(ctx: click.Context, schema: str) -> None:
    """Poll the IMAP inbox and ingest inquiry / PO attachments."""
    schemas = ("inquiry", "po") if schema == "both" else (schema,)
    try:
        results = _processor(ctx).ingest_inbox(schemas)
    except PipelineError as e:
        _fail(e)

    if not results:
        click.echo("No new attachments.")
        return
    click.echo()
    for result in results:
        name = Path(result.source_file).name
        if result.ok:
            click.echo(f"  ✓ {name}  -> {result.entity_kind} {result.document_number}")
        elif result.error:
            click.echo(f"  ✗ {name}  {result.error}")
        else:
            problems = ", ".join(f"{i.field} ({i.problem})" for i in result.issues)
            click.echo(f"  ✗ {name}  {problems}")
    click.echo()
    if not all(r.ok for r in results):
        sys.exit(1)


# --------------------------------------------------------------------
# Record browsing
# --------------------------------------------------------------------

@cli.command("list")
@click.option("--kind", "-k", required=True, type=click.Choice(KINDS))
@click.option("--status", "-s", default=None, help="Filter by current status")
@click.option("--search", default=None, help="Match document number or party name")
@click.option("--limit", default=50, show_default=True, type=int)
@click.pass_context
def list_records(ctx: click.Context, kind: str, status: str | None, search: str | None, limit: int) -> None:
    """List stored records of one kind, newest first."""
    try:
        records = _processor(ctx).db.list(kind, status=status, search=search, limit=limit)
    except PipelineError as e:
        _fail(e)

    if not records:
        click.echo("No records found.")
        return
    for entity in records:
        click.echo(
            f"  {entity.id}  {entity.number:<28} {str(current_status(entity)):<16} {entity.party}"
        )
    click.echo(f"\n{len(records)} record(s).")


@cli.command()
@click.argument("kind", type=click.Choice(KINDS))
@click.argument("entity_id")
@click.option("--json", "as_json", is_flag=True, help="Print the full record as JSON")
@click.option("--audit", is_flag=True, help="Include the audit trail")
@click.pass_context
def show(ctx: click.Context, kind: str, entity_id: str, as_json: bool, audit: bool) -> None:
    """Show one record."""
    processor = _processor(ctx)
    try:
        entity = processor.db.get(kind, entity_id)
        entries = processor.db.get_audit_log(entity_id) if audit else []
    except PipelineError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(entity.model_dump(mode="json"), indent=2))
    else:
        _echo_entity(entity)
    for entry in entries:
        click.echo(f"  {entry['timestamp']}  {entry['action']:<22} {entry['actor']}")


# --------------------------------------------------------------------
# Workflow commands
# --------------------------------------------------------------------

@cli.command("transition")
@click.argument("kind", type=click.Choice(KINDS))
@click.argument("entity_id")
@click.argument("action")
@click.pass_context
def transition_cmd(ctx: click.Context, kind: str, entity_id: str, action: str) -> None:
    """Apply ACTION (review, send, accept, ship, ...) to one record."""
    try:
        entity = _processor(ctx).workflow.apply_transition(kind, entity_id, action)
    except PipelineError as e:
        _fail(e)
    click.echo(f"✓ {kind} {entity.number} is now {current_status(entity)}")


def _parse_prices(values: tuple[str, ...]) -> dict[str, float]:
    prices: dict[str, float] = {}
    for value in values:
        key, sep, price = value.rpartition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"{value!r} is not CODE=PRICE", param_hint="--price")
        try:
            prices[key.strip()] = float(price)
        except ValueError:
            raise click.BadParameter(f"{price!r} is not a number", param_hint="--price")
    return prices


@cli.command()
@click.argument("inquiry_id")
@click.option("--price", "-p", "prices", multiple=True, help="CODE=PRICE (item code or item name)")
@click.option("--currency", default=None, help="Quotation currency (default: DEFAULT_CURRENCY)")
@click.option("--terms", default=None)
@click.pass_context
def quote(ctx: click.Context, inquiry_id: str, prices: tuple[str, ...], currency: str | None, terms: str | None) -> None:
    """Create a draft quotation from a reviewed inquiry."""
    price_map = _parse_prices(prices)
    try:
        quotation = _processor(ctx).workflow.convert_inquiry_to_quotation(
            inquiry_id, price_map, currency=currency, terms=terms,
        )
    except PipelineError as e:
        _fail(e)
    _echo_entity(quotation)


@cli.command()
@click.argument("quotation_id")
@click.option("--po-number", default=None, help="Customer PO number")
@click.option("--expiry", default=None, help="PO expiry date (YYYY-MM-DD)")
@click.pass_context
def accept(ctx: click.Context, quotation_id: str, po_number: str | None, expiry: str | None) -> None:
    """Accept a sent quotation and create its purchase order."""
    expiry_date = _parse_day(expiry)
    try:
        po = _processor(ctx).workflow.accept_quotation(
            quotation_id, po_number=po_number, expiry_date=expiry_date,
        )
    except PipelineError as e:
        _fail(e)
    _echo_entity(po)


@cli.command()
@click.argument("po_id")
@click.option("--supplier", required=True, help="Supplier name")
@click.option("--supplier-email", default=None)
@click.option("--expected", default=None, help="Expected delivery date (YYYY-MM-DD)")
@click.pass_context
def order(ctx: click.Context, po_id: str, supplier: str, supplier_email: str | None, expected: str | None) -> None:
    """Place a supplier order for a purchase order."""
    expected_date = _parse_day(expected)
    try:
        supplier_order = _processor(ctx).workflow.create_supplier_order_from_po(
            po_id, supplier, supplier_email=supplier_email, expected_delivery_date=expected_date,
        )
    except PipelineError as e:
        _fail(e)
    _echo_entity(supplier_order)


@cli.command()
@click.argument("order_id")
@click.option("--type", "document_type", default="both", show_default=True,
              type=click.Choice(DOCUMENT_TYPES))
@click.option("--trn", default=None, help="Customer Tax Registration Number")
@click.pass_context
def receive(ctx: click.Context, order_id: str, document_type: str, trn: str | None) -> None:
    """Mark an in-transit supplier order delivered and raise its delivery document."""
    try:
        document = _processor(ctx).workflow.receive_delivery(
            order_id, document_type=document_type, customer_trn=trn,
        )
    except PipelineError as e:
        _fail(e)
    _echo_entity(document)


@cli.command()
@click.argument("kind", type=click.Choice(["quotation", "delivery_document"]))
@click.argument("entity_id")
@click.option("--output", "-o", default=None, type=click.Path(file_okay=False),
              help="Directory for the PDF (default: DOCUMENTS_DIR)")
@click.pass_context
def render(ctx: click.Context, kind: str, entity_id: str, output: str | None) -> None:
    """Render a quotation or delivery document to PDF."""
    try:
        entity = _processor(ctx).render_document(
            kind, entity_id, output_dir=Path(output) if output else None,
        )
    except PipelineError as e:
        _fail(e)
    _echo_entity(entity)
    click.echo(f"  pdf:      {entity.pdf_path}")
    click.echo()


# --------------------------------------------------------------------
# Forecast commands
# --------------------------------------------------------------------

@cli.command()
@click.argument("material_code")
@click.pass_context
def forecast(ctx: click.Context, material_code: str) -> None:
    """Reorder forecast for one material code from stored purchase orders."""
    try:
        result = _processor(ctx).forecast_material(material_code)
    except PipelineError as e:
        _fail(e)

    click.echo()
    click.echo(f"  Material:            {result.material_code}  {result.material_name}")
    click.echo(f"  Purchases:           {len(result.purchase_history)} "
               f"({result.purchase_count_last_12_months} in the last 12 months)")
    click.echo(f"  Avg lead time:       {result.average_lead_time_days:.1f} days")
    click.echo(f"  Consumption:         {result.consumption_rate_per_month:.2f} / month")
    click.echo(f"  Consistency:         {result.purchase_frequency_consistency:.2f}")
    click.echo(f"  Next order:          {result.predicted_next_order_date}")
    click.echo(f"  Recommendation:      {result.recommendation}")
    click.echo(f"                       {result.recommendation_reason}")
    click.echo()


@cli.command()
@click.pass_context
def materials(ctx: click.Context) -> None:
    """List the material codes found on stored purchase orders."""
    try:
        codes = _processor(ctx).material_codes()
    except PipelineError as e:
        _fail(e)
    for code in codes:
        click.echo(code)
    if not codes:
        click.echo("No material codes on stored purchase orders.")


if __name__ == "__main__":
    cli()
