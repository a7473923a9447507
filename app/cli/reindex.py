# =============================================
# File: app/cli/reindex.py
# Purpose: CLI entrypoint to (re)build the search indexes from an items JSON file
#          and warm the suggestion system from the query log.
# Usage:
#   python -m app.cli.reindex --items app/data/items.json --vector-backend chroma
# =============================================
from __future__ import annotations
import argparse
import os
import sys

from app.db.repo import init_db
from app.services.item_store import InMemoryItemStore
from app.services.search import SearchService


def main(argv=None):
    ap = argparse.ArgumentParser(description="Rebuild keyword/vector indexes from an items JSON file.")
    ap.add_argument("--items", default=os.getenv("ITEMS_PATH", "app/data/items.json"), help="JSON list of items")
    ap.add_argument("--vector-backend", choices=["bruteforce", "chroma"], default=None, help="override VECTOR_BACKEND")
    ap.add_argument("--no-warm-up", action="store_true", help="skip query-log replay into the trie/trends")
    args = ap.parse_args(argv)

    if args.vector_backend:
        os.environ["VECTOR_BACKEND"] = args.vector_backend

    store = InMemoryItemStore(path=args.items)
    if len(store) == 0:
        print(f"[WARN] No items loaded from {args.items}. Check --items path.", file=sys.stderr)
        sys.exit(1)

    init_db()
    svc = SearchService(item_store=store)
    try:
        n = svc.reindex()
        msg = f"[OK] Indexed {n} eligible items from {args.items}"
        if not args.no_warm_up:
            stats = svc.warm_up()
            msg += f"; replayed {stats['replayed']} queries, {stats['terms']} catalog terms"
        print(msg)
    finally:
        svc.shutdown()


if __name__ == "__main__":
    main()
