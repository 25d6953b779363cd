#!/usr/bin/env python3
"""
Watchlist Loading Script

Imports watchlists from JSON files into the screening database. Each file
holds one watchlist:

    {
        "type": "sanctions",
        "source": "ofac",
        "name": "OFAC SDN",
        "entries": [{"id": "OFAC-1", "name": "John Doe", "country": "XX"}]
    }

or a bare list of entries, in which case --type and --source are required.
Re-importing the same (type, source) replaces the existing list.

Usage:
    python load_watchlists.py sdn.json un.json
    python load_watchlists.py peps.json --type pep --source custom
    python load_watchlists.py --with-samples
"""

import sys
import json
import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from database.connection import init_db, close_db
from database.repositories import SqlWatchlistStore, SqlAuditTrail
from screening.errors import ScreeningError, ValidationError
from screening.stores import WatchlistStore

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


SAMPLE_WATCHLISTS: List[Dict[str, Any]] = [
    {
        "type": "sanctions",
        "source": "ofac",
        "name": "OFAC SDN (sample)",
        "entries": [
            {"id": "OFAC-SAMPLE-1", "name": "John Doe", "country": "XX"},
            {"id": "OFAC-SAMPLE-2", "name": "Acme Trading Company", "country": "YY"},
        ],
    },
    {
        "type": "pep",
        "source": "custom",
        "name": "Internal PEP list (sample)",
        "entries": [
            {"id": "PEP-SAMPLE-1", "name": "Jane Roe", "country": "ZZ", "position": "Minister of Finance"},
        ],
    },
]


def read_watchlist_file(path: Path, watchlist_type: Optional[str], source: Optional[str]) -> Dict[str, Any]:
    """Read one watchlist document, applying command-line type/source overrides."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, list):
        data = {"entries": data}
    if not isinstance(data, dict):
        raise ValidationError(f"{path.name}: expected an object or a list of entries", field="file")

    document = dict(data)
    if watchlist_type:
        document["type"] = watchlist_type
    if source:
        document["source"] = source

    for required in ("type", "source"):
        if not document.get(required):
            raise ValidationError(
                f"{path.name}: missing watchlist {required}",
                field=required,
                suggestion=f"Add '{required}' to the file or pass --{required}"
            )
    return document


def import_watchlist(store: WatchlistStore, document: Dict[str, Any]):
    watchlist = store.bulk_import(
        document["type"],
        document["source"],
        document.get("entries") or [],
        name=document.get("name"),
    )
    logger.info(f"Imported {watchlist.name}: {len(watchlist.entries)} entries ({watchlist.type}/{watchlist.source})")
    return watchlist


def main():
    parser = argparse.ArgumentParser(description="Import watchlists into the screening database")
    parser.add_argument("files", nargs="*", type=Path, help="Watchlist JSON files")
    parser.add_argument("--type", dest="watchlist_type", help="Watchlist type for files without one")
    parser.add_argument("--source", help="Watchlist source for files without one")
    parser.add_argument("--with-samples", action="store_true", help="Load sample watchlists for development")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.files and not args.with_samples:
        parser.error("give at least one watchlist file or --with-samples")

    logger.info("=" * 50)
    logger.info("Watchlist Loading")
    logger.info("=" * 50)

    try:
        documents = [read_watchlist_file(p, args.watchlist_type, args.source) for p in args.files]
        if args.with_samples:
            documents.extend(SAMPLE_WATCHLISTS)

        db = init_db()
        store = SqlWatchlistStore(db)
        audit = SqlAuditTrail(db)

        for index, document in enumerate(documents, start=1):
            logger.info(f"[{index}/{len(documents)}] {document.get('name') or document['type'] + '/' + document['source']}")
            watchlist = import_watchlist(store, document)
            audit.record(
                "DATA_UPDATE",
                "watchlist",
                resource_id=watchlist.id,
                actor="load_watchlists",
                details={"type": watchlist.type, "source": watchlist.source, "entry_count": len(watchlist.entries)},
            )

        logger.info("=" * 50)
        logger.info(f"Watchlist loading complete: {len(documents)} list(s)")
        logger.info("=" * 50)
    except (OSError, json.JSONDecodeError, ScreeningError) as e:
        logger.error(f"Error loading watchlists: {e}")
        sys.exit(1)
    finally:
        close_db()


if __name__ == "__main__":
    main()
