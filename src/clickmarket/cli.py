"""Command-line interface for clickmarket."""

import argparse
import json
import logging
import sys

from . import __version__
from .deliveries import DeliveryService
from .errors import ClickMarketError
from .invoices import InvoiceService
from .orders import OrderService
from .payments import PaymentService
from .store import Database
from .utils import format_amount, format_ts


def get_database(args: argparse.Namespace) -> Database:
    """Get the Database for --data-dir, or the configured default."""
    return Database(args.data_dir)


def cmd_show(args: argparse.Namespace) -> int:
    """Print one document as JSON."""
    try:
        db = get_database(args)
        getters = {
            "order": OrderService(db).get_order,
            "payment": PaymentService(db).get_payment,
            "invoice": InvoiceService(db).get_invoice,
            "delivery": DeliveryService(db).get_delivery,
        }
        document = getters[args.kind](args.id)
        print(json.dumps(document.to_dict(), indent=2))
        return 0

    except ClickMarketError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_list(args: argparse.Namespace) -> int:
    """List orders or invoices."""
    try:
        db = get_database(args)
        if args.kind == "orders":
            page = OrderService(db).list_orders(
                status=args.status, customer_id=args.customer, page=args.page, limit=args.limit
            )
        else:
            page = InvoiceService(db).list_invoices(
                status=args.status, customer_id=args.customer, page=args.page, limit=args.limit
            )

        if args.json:
            print(json.dumps([doc.to_dict() for doc in page.items], indent=2))
            return 0

        if not page.items:
            print(f"No {args.kind} found.")
            return 0

        print(f"{args.kind.capitalize()} ({len(page.items)} of {page.total}):")
        print()
        for doc in page.items:
            label = getattr(doc, "invoice_number", None) or doc.id[:8]
            print(
                f"  {label}  {doc.status:<15} {format_amount(doc.grand_total):>12}  "
                f"{format_ts(doc.created_at)}"
            )
        return 0

    except ClickMarketError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_sweep_overdue(args: argparse.Namespace) -> int:
    """Flip issued invoices past their due date to overdue."""
    try:
        flipped = InvoiceService(get_database(args)).sweep_overdue()

        if not flipped:
            print("No overdue invoices.")
            return 0

        print(f"Marked {len(flipped)} invoice(s) overdue:")
        for invoice in flipped:
            print(
                f"  {invoice.invoice_number}  {format_amount(invoice.grand_total):>12}  "
                f"due {invoice.due_date.date().isoformat()}"
            )
        return 0

    except ClickMarketError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        print("Starting clickmarket API server...")
        print(f"Data directory: {get_database(args).data_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "clickmarket.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="clickmarket",
        description="Order, payment, invoice and delivery lifecycle for ClickMarket.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--data-dir", help="Data directory (default: $CLICKMARKET_DATA_DIR or ./data)"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # show
    show_parser = subparsers.add_parser("show", help="Show a document as JSON")
    show_parser.add_argument("kind", choices=["order", "payment", "invoice", "delivery"])
    show_parser.add_argument("id", help="Document ID")

    # list
    list_parser = subparsers.add_parser("list", help="List orders or invoices")
    list_parser.add_argument("kind", choices=["orders", "invoices"])
    list_parser.add_argument("--status", "-s", help="Filter by status")
    list_parser.add_argument("--customer", "-c", help="Filter by customer ID")
    list_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    list_parser.add_argument("--limit", type=int, help="Page size")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # sweep-overdue
    subparsers.add_parser(
        "sweep-overdue", help="Mark issued invoices past their due date as overdue"
    )

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=8000, help="Port to bind (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "show": cmd_show,
        "list": cmd_list,
        "sweep-overdue": cmd_sweep_overdue,
        "serve": cmd_serve,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
