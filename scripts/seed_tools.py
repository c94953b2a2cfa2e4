#!/usr/bin/env python3
"""Load a YAML tool catalog into the configured tool store.

Usage:
    python scripts/seed_tools.py catalog.yaml              # Upsert every tool
    python scripts/seed_tools.py catalog.yaml --dry-run    # Print what would be written
    python scripts/seed_tools.py catalog.yaml --store sqlite

The catalog is a list of tools:

    - name: UnlockTool
      price: 20
      durationMinutes: 30
    - name: Chimera Tool
      rates: {1: 15, 3: 40, 24: 100}
"""
import argparse
import sys
from pathlib import Path

import yaml

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rental_bot.config import load_config
from rental_bot.logging import configure_logging
from services.inventory import catalog_record
from services.store import build_store


def load_catalog(path: Path) -> list:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("tools", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of tools")
    return [catalog_record(entry) for entry in data if isinstance(entry, dict)]


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the tool rental catalog")
    parser.add_argument("catalog", type=Path, help="YAML catalog file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print records without writing them",
    )
    parser.add_argument(
        "--store",
        choices=["firestore", "sqlite"],
        help="Override the configured store backend",
    )
    args = parser.parse_args()

    config = dict(load_config())
    configure_logging(config)
    if args.store:
        config["store"] = {**config.get("store", {}), "backend": args.store}

    records = load_catalog(args.catalog)
    if args.dry_run:
        for record in records:
            print(f"  {record.id}: {record.to_fields()}")
        print(f"{len(records)} tool(s) would be written.")
        return

    store = build_store(config)
    for record in records:
        store.upsert(record)
        print(f"  upserted {record.id} ({record.name})")
    print(f"Seeded {len(records)} tool(s).")


if __name__ == "__main__":
    main()
