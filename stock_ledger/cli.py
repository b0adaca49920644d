"""
Command-line interface for the stock ledger.

Usage:
    stock-ledger [--config ledger.yaml] [--database-url URL] <command> ...

Examples:
    # Create tables
    stock-ledger --database-url sqlite:///ledger.db init-db

    # Register a product with opening stock
    stock-ledger register --sku RICE-5KG --name "Rice 5kg" --unit kg \\
        --initial-stock 5 --actor 6f1c...

    # Purchase 2.5 kg
    stock-ledger adjust --product RICE-5KG --cause purchase --quantity 2.50 \\
        --reason "Weekly restock" --reference PO-1001 --actor 6f1c...

    # Apply a batch file
    stock-ledger batch stocktake.yaml --actor 6f1c...

    # Browse history, newest first
    stock-ledger history --product RICE-5KG --page-size 20

Every command prints JSON on stdout.  Typed errors print
``{"error": <code>, "message": <text>}`` on stderr and exit with status 1.
"""

import argparse
import json
import sys
from dataclasses import asdict, is_dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from stock_ledger.config import load_settings
from stock_ledger.db.engine import (
    create_tables,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from stock_ledger.db.immutability import register_immutability_listeners
from stock_ledger.domain.causes import AdjustmentCause
from stock_ledger.domain.dtos import BatchItem
from stock_ledger.domain.units import Unit
from stock_ledger.exceptions import StockLedgerError
from stock_ledger.logging_config import configure_logging, get_logger
from stock_ledger.selectors.history_selector import SORT_FIELDS, SORT_ORDERS, HistoryQuery
from stock_ledger.services.sequence_service import SequenceService
from stock_ledger.services.stock_ledger_service import StockLedgerService

logger = get_logger("cli")


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _emit(value: Any) -> None:
    print(json.dumps(_jsonable(value), indent=2, default=str))


def _fail(code: str, message: str) -> int:
    print(json.dumps({"error": code, "message": message}), file=sys.stderr)
    return 1


def _uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a UUID: {value!r}") from None


def _timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value!r}") from None


def _resolve_product(service: StockLedgerService, ref: str) -> UUID:
    """Accept a product id or a SKU."""
    try:
        return UUID(ref)
    except ValueError:
        return service.get_product_by_sku(ref).id


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init_db(service: StockLedgerService, args) -> Any:
    create_tables()
    with session_scope(write=True) as session:
        SequenceService(session).initialize_sequences()
    return {"status": "initialized"}


def cmd_register(service: StockLedgerService, args) -> Any:
    return service.register_product(
        args.sku,
        args.name,
        args.unit,
        args.actor,
        min_quantity=args.min_quantity,
        initial_stock=args.initial_stock,
    )


def cmd_adjust(service: StockLedgerService, args) -> Any:
    return service.apply_adjustment(
        _resolve_product(service, args.product),
        args.cause,
        args.quantity,
        args.reason,
        args.actor,
        reference=args.reference,
    )


def cmd_batch(service: StockLedgerService, args) -> Any:
    """
    Batch file layout:

        reason: Monthly stocktake
        cause: adjustment_negative
        reference: ST-2024-01
        items:
          - product: RICE-5KG
            quantity: 0.5
          - product: 3c1e...
            quantity: 2
            cause: damaged
            reason: Torn bags
    """
    with open(args.file) as f:
        document = yaml.safe_load(f) or {}
    if not isinstance(document, dict) or not isinstance(document.get("items"), list):
        raise ValueError(f"{args.file}: expected a mapping with an 'items' list")

    items = []
    for raw in document["items"]:
        if not isinstance(raw, dict) or "product" not in raw or "quantity" not in raw:
            raise ValueError(f"{args.file}: every item needs 'product' and 'quantity'")
        items.append(
            BatchItem(
                product_id=_resolve_product(service, str(raw["product"])),
                quantity=raw["quantity"],
                cause=raw.get("cause"),
                reason=raw.get("reason"),
                reference=raw.get("reference"),
            )
        )

    return service.apply_batch(
        items,
        args.actor,
        shared_reason=document.get("reason"),
        shared_cause=document.get("cause"),
        shared_reference=document.get("reference"),
    )


def cmd_history(service: StockLedgerService, args) -> Any:
    query = HistoryQuery(
        product_id=_resolve_product(service, args.product) if args.product else None,
        start=args.start,
        end=args.end,
        causes=frozenset(args.cause) if args.cause else None,
        polarity=args.polarity,
        actor_id=args.actor,
        batch_id=args.batch,
        sort_field=args.sort_field,
        sort_order=args.sort_order,
        page=args.page,
        page_size=args.page_size,
    )
    return service.query_history(query)


def cmd_status(service: StockLedgerService, args) -> Any:
    if args.product:
        return service.classify_stock(_resolve_product(service, args.product))
    return service.list_products()


def cmd_summary(service: StockLedgerService, args) -> Any:
    return service.movement_summary(_resolve_product(service, args.product))


def cmd_alerts(service: StockLedgerService, args) -> Any:
    return service.list_alerts()


def cmd_thresholds(service: StockLedgerService, args) -> Any:
    if args.action == "show":
        return service.get_alert_settings()
    if args.actor is None:
        raise ValueError("--actor is required to change thresholds")
    if args.product:
        return service.set_threshold_override(
            _resolve_product(service, args.product), args.low, args.critical, args.actor
        )
    return service.update_alert_settings(
        args.actor,
        low_threshold=args.low,
        critical_threshold=args.critical,
        email_notifications=args.email,
        sms_notifications=args.sms,
    )


def cmd_verify(service: StockLedgerService, args) -> Any:
    product_id = _resolve_product(service, args.product) if args.product else None
    report = service.verify_ledger(product_id)
    return {
        "is_valid": report.is_valid,
        "product_count": report.product_count,
        "entry_count": report.entry_count,
        "violations": [asdict(v) for v in report.violations],
    }


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stock-ledger",
        description="Append-only stock ledger.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="YAML settings file")
    parser.add_argument("--database-url", help="Override the configured database URL")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables")
    p.set_defaults(handler=cmd_init_db)

    p = sub.add_parser("register", help="Register a product")
    p.add_argument("--sku", required=True)
    p.add_argument("--name", required=True)
    p.add_argument("--unit", required=True, choices=[u.value for u in Unit])
    p.add_argument("--min-quantity")
    p.add_argument("--initial-stock", default="0")
    p.add_argument("--actor", type=_uuid, required=True)
    p.set_defaults(handler=cmd_register)

    p = sub.add_parser("adjust", help="Apply one adjustment")
    p.add_argument("--product", required=True, help="Product id or SKU")
    p.add_argument("--cause", required=True, choices=[c.value for c in AdjustmentCause])
    p.add_argument("--quantity", required=True)
    p.add_argument("--reason", required=True)
    p.add_argument("--reference")
    p.add_argument("--actor", type=_uuid, required=True)
    p.set_defaults(handler=cmd_adjust)

    p = sub.add_parser("batch", help="Apply a YAML batch file atomically")
    p.add_argument("file", type=Path)
    p.add_argument("--actor", type=_uuid, required=True)
    p.set_defaults(handler=cmd_batch)

    p = sub.add_parser("history", help="Query ledger history")
    p.add_argument("--product", help="Product id or SKU")
    p.add_argument("--cause", action="append", choices=[c.value for c in AdjustmentCause])
    p.add_argument("--polarity", choices=["addition", "removal"])
    p.add_argument("--actor", type=_uuid)
    p.add_argument("--batch", type=_uuid)
    p.add_argument("--start", type=_timestamp)
    p.add_argument("--end", type=_timestamp)
    p.add_argument("--sort-field", default="timestamp", choices=SORT_FIELDS)
    p.add_argument("--sort-order", default="desc", choices=SORT_ORDERS)
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--page-size", type=int, default=10)
    p.set_defaults(handler=cmd_history)

    p = sub.add_parser("status", help="Stock status of one product, or list all products")
    p.add_argument("--product", help="Product id or SKU")
    p.set_defaults(handler=cmd_status)

    p = sub.add_parser("summary", help="Movement summary of one product")
    p.add_argument("--product", required=True, help="Product id or SKU")
    p.set_defaults(handler=cmd_summary)

    p = sub.add_parser("alerts", help="Products below their thresholds")
    p.set_defaults(handler=cmd_alerts)

    p = sub.add_parser("thresholds", help="Show or set alert thresholds")
    p.add_argument("action", choices=["show", "set"])
    p.add_argument("--product", help="Set a per-product override instead of the global value")
    p.add_argument("--low")
    p.add_argument("--critical")
    p.add_argument("--email", action=argparse.BooleanOptionalAction, default=None)
    p.add_argument("--sms", action=argparse.BooleanOptionalAction, default=None)
    p.add_argument("--actor", type=_uuid)
    p.set_defaults(handler=cmd_thresholds)

    p = sub.add_parser("verify", help="Replay the ledger and report invariant violations")
    p.add_argument("--product", help="Product id or SKU")
    p.set_defaults(handler=cmd_verify)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
        if args.database_url:
            settings = replace(settings, database_url=args.database_url)
    except StockLedgerError as exc:
        return _fail(exc.code, str(exc))

    configure_logging(level=settings.log_level, stream=sys.stderr)

    try:
        init_engine_from_url(settings.database_url, echo=settings.echo_sql, pool_size=settings.pool_size)
        register_immutability_listeners()
        service = StockLedgerService(settings=settings)
        result = args.handler(service, args)
    except StockLedgerError as exc:
        logger.warning("cli_command_failed", extra={"command": args.command, "error_code": exc.code})
        return _fail(exc.code, str(exc))
    except (ValueError, OSError, yaml.YAMLError) as exc:
        logger.warning(
            "cli_command_failed", extra={"command": args.command, "error_code": "INVALID_ARGUMENT"}
        )
        return _fail("INVALID_ARGUMENT", str(exc))
    finally:
        reset_engine()

    logger.info("cli_command_completed", extra={"command": args.command})
    _emit(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
