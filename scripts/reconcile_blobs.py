import argparse
import os
import sys

# Add project root to sys.path
sys.path.append(os.path.join(os.path.dirname(__file__), "../"))

from recipebook.db import init_engine, session_factory
from recipebook.services.metadata import MetadataStore
from recipebook.services.reconcile import reconcile
from recipebook.settings import settings
from recipebook.storage.blobs import get_store


def reconcile_blobs(dry_run: bool = False) -> int:
    print(f"Connecting to {settings.database_url}...")
    init_engine(settings.database_url)
    session = session_factory()()

    try:
        report = reconcile(
            MetadataStore(session),
            get_store(),
            dry_run=dry_run,
            grace_seconds=settings.reconcile_grace_seconds,
        )
        for recipe_id in report.retired_recipes:
            print(f"Recipe {recipe_id}: no body blob, retired")
        for key in report.removed_blobs:
            print(f"Blob {key}: removed")
        for key in report.failed_blobs:
            print(f"Blob {key}: could not be removed")
        print("Dry run complete." if dry_run else "Reconcile complete.")
        return 1 if report.failed_blobs else 0
    finally:
        session.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reconcile recipe rows with the blob store.")
    parser.add_argument("--dry-run", action="store_true", help="report without changing anything")
    args = parser.parse_args()
    sys.exit(reconcile_blobs(dry_run=args.dry_run))
