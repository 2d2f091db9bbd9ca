#!/usr/bin/env python3
"""
treevec operator CLI.

Vectorize a project tree, re-vectorize single files, search, and manage the
vector store from the command line. Configuration comes from TREEVEC_*
environment variables.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Load environment variables from .env file first
import dotenv
dotenv.load_dotenv()

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from treevec.core.config import create_orchestrator
from treevec.core.errors import TreeVecError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Vectorize a project tree and search it by similarity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s vectorize ./my_project           # Vectorize every unprocessed file and directory
  %(prog)s vectorize-file ./my_project/a.py # Re-vectorize one file
  %(prog)s search "database connection"     # Top 5 similar files/directories
  %(prog)s stats                            # Record count and disk usage
  %(prog)s clear --yes                      # Delete every stored vector

Environment variables:
- TREEVEC_EMBED_PROVIDER=ollama|openai|sentence_transformers|hash
- TREEVEC_EMBED_MODEL=... (required unless hash)
- TREEVEC_STORAGE_DIR=./data/treevec
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    vectorize = subparsers.add_parser("vectorize", help="Vectorize all unprocessed nodes under a root")
    vectorize.add_argument("root", help="Project root directory")

    vectorize_file = subparsers.add_parser("vectorize-file", help="Re-vectorize a single file")
    vectorize_file.add_argument("path", help="File to vectorize")
    vectorize_file.add_argument("--kind", choices=["origin", "summarize"],
                                help="Only replace this kind (default: all enabled kinds)")

    search = subparsers.add_parser("search", help="Similarity search")
    search.add_argument("query", help="Free-text query")
    search.add_argument("--limit", "-k", type=int, default=5, help="Maximum results (default: 5)")
    search.add_argument("--json", action="store_true", help="Print results as JSON")

    subparsers.add_parser("stats", help="Show store statistics")

    clear = subparsers.add_parser("clear", help="Delete every stored vector")
    clear.add_argument("--yes", "-y", action="store_true", help="Confirm deletion")

    subparsers.add_parser("rebuild-index", help="Force an approximate index rebuild")

    return parser


async def run_command(args, orchestrator) -> int:
    if args.command == "vectorize":
        print(f"Vectorizing {args.root}...")
        result = await orchestrator.vectorize_all_unprocessed(args.root)
        print(f"✓ Processed: {result.processed}, errors: {result.errors}")
        for message in result.error_messages:
            print(f"  ERROR: {message}")
        return 0 if result.errors == 0 else 2

    if args.command == "vectorize-file":
        item_id = await orchestrator.vectorize_file(args.path, args.kind)
        print(f"✓ Vectorized {args.path} (record {item_id})")
        return 0

    if args.command == "search":
        hits = await orchestrator.search_similar(args.query, args.limit)
        if args.json:
            print(json.dumps(hits, indent=2, ensure_ascii=False))
        elif not hits:
            print("No results (the store is empty)")
        else:
            for rank, hit in enumerate(hits, 1):
                print(f"{rank:2d}. {hit['similarity']:.3f}  [{hit['type']}/{hit['kind']}]  {hit['path']}")
        return 0

    if args.command == "stats":
        store = orchestrator.store
        print(f"Records:   {orchestrator.get_storage_count()}")
        print(f"Dimension: {store.dimension if store.dimension is not None else '-'}")
        print(f"Disk size: {orchestrator.get_storage_size()} bytes")
        if hasattr(store, "has_index"):
            print(f"Index:     {'built' if store.has_index else 'none (exact search)'}")
        return 0

    if args.command == "clear":
        if not args.yes:
            print("Refusing to clear storage without --yes")
            return 1
        orchestrator.clear_storage()
        print("✓ Storage cleared")
        return 0

    if args.command == "rebuild-index":
        store = orchestrator.store
        if not hasattr(store, "rebuild_index"):
            print("ERROR: The configured vector store has no approximate index")
            return 1
        if store.rebuild_index():
            print(f"✓ Index rebuilt over {store.get_count()} records")
            return 0
        print("WARNING: No index was built (store empty or build failed, see log)")
        return 1

    return 1


def main(argv=None, orchestrator_factory=create_orchestrator) -> int:
    args = build_parser().parse_args(argv)

    try:
        orchestrator = orchestrator_factory()
        orchestrator.initialize()
    except TreeVecError as e:
        print(f"ERROR: {e}")
        return 1

    try:
        return asyncio.run(run_command(args, orchestrator))
    except TreeVecError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        orchestrator.dispose()


if __name__ == "__main__":
    sys.exit(main())
