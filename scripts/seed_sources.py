#!/usr/bin/env python3
"""Load sources into the source registry from a JSON file.

The file holds a list of objects with the fields of a source, e.g.:

    [{"name": "example-news", "domain": "example.com",
      "rss_url": "https://example.com/rss.xml", "delay_between_requests": 1000}]

Existing sources (matched by name) are left untouched.

Usage:
    python scripts/seed_sources.py sources.json
    python scripts/seed_sources.py sources.json --create-tables
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict, List

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from newsingest.database.connection import DatabaseConnection
from newsingest.database.repositories import SourceRepository
from newsingest.shared.config import get_settings


async def seed(entries: List[Dict[str, Any]], create_tables: bool) -> int:
    db = DatabaseConnection(get_settings())
    db.setup()
    try:
        if create_tables:
            await db.create_all()
        source_repo = SourceRepository(db)
        created = 0
        for entry in entries:
            if await source_repo.get_by_name(entry["name"]):
                print(f"  = {entry['name']} (exists)")
                continue
            await source_repo.create_source(**entry)
            created += 1
            print(f"  + {entry['name']}")
        return created
    finally:
        await db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the source registry")
    parser.add_argument("path", help="JSON file with a list of sources")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    args = parser.parse_args()

    with open(args.path, encoding="utf-8") as handle:
        entries = json.load(handle)

    missing = [entry for entry in entries if not {"name", "domain", "rss_url"} <= set(entry)]
    if missing:
        print(f"Error: {len(missing)} entries lack name, domain or rss_url", file=sys.stderr)
        return 1

    created = asyncio.run(seed(entries, args.create_tables))
    print(f"Created {created} of {len(entries)} sources")
    return 0


if __name__ == "__main__":
    sys.exit(main())
