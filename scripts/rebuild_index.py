#!/usr/bin/env python3
"""
Index Rebuild Utility
Brings every note embedding up to date with the vault, or rebuilds the whole
index from scratch with --rebuild.
"""

import argparse
import asyncio
import sys

from similar_notes.core.config import VAULT_PATH, get_embedding_provider, get_vector_store, load_settings
from similar_notes.core.errors import ConfigError
from similar_notes.core.notes import VaultNoteSource
from similar_notes.core.session import initialize, shutdown


async def _run(session, rebuild):
    try:
        return await session.reindex_all(rebuild=rebuild)
    finally:
        await shutdown(session)


def main(argv=None):
    """Reindex the vault's note embeddings."""
    parser = argparse.ArgumentParser(description="Reindex note embeddings")
    parser.add_argument("--rebuild", action="store_true", help="clear the index and re-embed every note")
    parser.add_argument("--vault", default=None, help="vault directory (default: VAULT_PATH)")
    parser.add_argument("--settings", default=None, help="settings file (default: SETTINGS_PATH)")
    args = parser.parse_args(argv)

    print("Starting embedding reindex...")

    try:
        settings = load_settings(args.settings)
        provider = get_embedding_provider(settings)
    except ConfigError as e:
        for issue in e.issues:
            print(f"ERROR: {issue}")
        sys.exit(1)

    vector_store = get_vector_store()
    note_source = VaultNoteSource(args.vault or VAULT_PATH)
    print(f"Using model {settings.model_id} over {note_source.root}")

    session = initialize(
        settings=settings,
        note_source=note_source,
        store=vector_store,
        provider=provider,
        notify=lambda message: print(f"  {message}"),
    )

    if args.rebuild:
        print("Clearing existing embeddings before reindex")

    report = asyncio.run(_run(session, args.rebuild))

    print(f"Found {report.candidates} notes, {report.excluded} excluded")

    if report.aborted:
        print(f"ERROR: Reindex aborted: {report.abort_reason}")
        sys.exit(1)

    print(
        f"✓ Reindex complete: {report.embedded} embedded, "
        f"{report.up_to_date} unchanged, {report.removed} removed"
    )

    if report.failed or report.skipped:
        print(f"WARNING: {report.failed} notes failed, {report.skipped} skipped")
        for path, error in sorted(report.errors.items()):
            print(f"  - {path}: {error}")

    return report


if __name__ == "__main__":
    main()
