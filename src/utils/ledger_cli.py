"""
Ledger CLI Utility

Command-line interface for operators and scripts. Every command prints the
structured result of the production_api call as JSON and exits 0 on success,
1 on failure.

Usage Examples:
    # Create the database and tables
    python -m src.utils.ledger_cli init-db

    # Check whether 10 units of recipe 3 can be produced
    python -m src.utils.ledger_cli simulate 3 10

    # Produce 10 units and mark them finished immediately
    python -m src.utils.ledger_cli produce 3 10 --status concluido --actor ana

    # Reverse batch 12 (returns materials, removes finished goods)
    python -m src.utils.ledger_cli status 12 estornado --actor ana

    # Receive 2 l of material 5 for a total of 90.00
    python -m src.utils.ledger_cli movement 5 entrada 2 --unit l --total-value 90

    # Delete batch 12 (privileged, requires --yes)
    python -m src.utils.ledger_cli delete-batch 12 --yes
"""

import argparse
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.models import MovementType, ProductionStatus
from src.services import production_api
from src.services.database import initialize_app_database
from src.services.logging_utils import configure_logging
from src.utils.config import get_config


def result_to_json(result: Dict[str, Any]) -> str:
    """Serialize a structured result; Decimals and datetimes become strings."""
    return json.dumps(result, indent=2, default=str, ensure_ascii=False)


def _emit(result: Dict[str, Any]) -> int:
    print(result_to_json(result))
    return 0 if result.get("success") else 1


# ============================================================================
# Command handlers
# ============================================================================


def init_db_cmd(args) -> int:
    """Create the database file and tables."""
    config = get_config()
    return _emit({"success": True, "database_url": config.database_url})


def simulate_cmd(args) -> int:
    """Simulate production of a recipe."""
    return _emit(production_api.simulate_production(args.recipe_id, args.quantity))


def produce_cmd(args) -> int:
    """Commit a production batch."""
    return _emit(
        production_api.create_production_batch(
            args.recipe_id,
            args.quantity,
            notes=args.notes,
            actor=args.actor,
            initial_status=args.status,
        )
    )


def status_cmd(args) -> int:
    """Change a batch's status."""
    return _emit(production_api.change_production_status(args.batch_id, args.status, actor=args.actor))


def delete_batch_cmd(args) -> int:
    """Delete a batch; refuses without --yes."""
    if not args.yes:
        return _emit(
            {
                "success": False,
                "error": "Deleting a batch removes its audit record; re-run with --yes to confirm",
                "error_type": "ValidationError",
            }
        )
    return _emit(production_api.delete_production_batch(args.batch_id, actor=args.actor))


def movement_cmd(args) -> int:
    """Record a raw material movement."""
    return _emit(
        production_api.record_raw_material_movement(
            args.material_id,
            args.quantity,
            args.kind,
            notes=args.notes,
            actor=args.actor,
            unit=args.unit,
            unit_cost=args.unit_cost,
            total_value=args.total_value,
        )
    )


def activate_recipe_cmd(args) -> int:
    """Activate a recipe version."""
    return _emit(production_api.activate_recipe(args.recipe_id))


def low_stock_cmd(args) -> int:
    """List materials at or below minimum stock."""
    return _emit(production_api.get_low_stock_materials())


COMMANDS = {
    "init-db": init_db_cmd,
    "simulate": simulate_cmd,
    "produce": produce_cmd,
    "status": status_cmd,
    "delete-batch": delete_batch_cmd,
    "movement": movement_cmd,
    "activate-recipe": activate_recipe_cmd,
    "low-stock": low_stock_cmd,
}


# ============================================================================
# Parser
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Atelier Ledger - raw material ledger and production batches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Simulate, then produce:
    python -m src.utils.ledger_cli simulate 3 10
    python -m src.utils.ledger_cli produce 3 10 --actor ana

  Mark a batch as lost:
    python -m src.utils.ledger_cli status 12 perda
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log service operations")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init-db", help="Create database tables")

    simulate_parser = subparsers.add_parser("simulate", help="Simulate production (read-only)")
    simulate_parser.add_argument("recipe_id", type=int)
    simulate_parser.add_argument("quantity", type=int)

    produce_parser = subparsers.add_parser("produce", help="Commit a production batch")
    produce_parser.add_argument("recipe_id", type=int)
    produce_parser.add_argument("quantity", type=int)
    produce_parser.add_argument(
        "--status",
        choices=[ProductionStatus.PRODUZINDO.value, ProductionStatus.CONCLUIDO.value],
        default=ProductionStatus.PRODUZINDO.value,
        help="Initial batch status (default: produzindo)",
    )
    produce_parser.add_argument("--notes")
    produce_parser.add_argument("--actor")

    status_parser = subparsers.add_parser("status", help="Change a batch's status")
    status_parser.add_argument("batch_id", type=int)
    status_parser.add_argument("status", choices=[s.value for s in ProductionStatus])
    status_parser.add_argument("--actor")

    delete_parser = subparsers.add_parser("delete-batch", help="Delete a batch (privileged)")
    delete_parser.add_argument("batch_id", type=int)
    delete_parser.add_argument("--actor")
    delete_parser.add_argument("--yes", action="store_true", help="Confirm deletion")

    movement_parser = subparsers.add_parser("movement", help="Record a raw material movement")
    movement_parser.add_argument("material_id", type=int)
    movement_parser.add_argument("kind", choices=[m.value for m in MovementType])
    movement_parser.add_argument("quantity", type=Decimal)
    movement_parser.add_argument("--unit", help="Unit of quantity (default: material unit)")
    cost_group = movement_parser.add_mutually_exclusive_group()
    cost_group.add_argument("--unit-cost", type=Decimal, help="Cost per base unit (entrada)")
    cost_group.add_argument("--total-value", type=Decimal, help="Total price paid (entrada)")
    movement_parser.add_argument("--notes")
    movement_parser.add_argument("--actor")

    activate_parser = subparsers.add_parser("activate-recipe", help="Activate a recipe version")
    activate_parser.add_argument("recipe_id", type=int)

    subparsers.add_parser("low-stock", help="List materials at or below minimum stock")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(logging.INFO if args.verbose else logging.WARNING)

    initialize_app_database()

    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
