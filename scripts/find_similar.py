#!/usr/bin/env python3
"""
Print the notes most similar to one note.

Embeds the note first when its stored embedding is missing or stale and a
provider is configured; otherwise ranks with whatever is stored.
"""

import argparse
import asyncio
import sys

from similar_notes.core.config import EMBED_PROVIDER, VAULT_PATH, get_embedding_provider, get_vector_store, load_settings
from similar_notes.core.errors import ConfigError
from similar_notes.core.notes import VaultNoteSource
from similar_notes.core.session import SimilarNotesSession, shutdown


async def _run(session, path, k):
    try:
        return await session.find_similar(path, k)
    finally:
        await shutdown(session)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Find notes similar to a note")
    parser.add_argument("path", help="vault-relative note path")
    parser.add_argument("-k", type=int, default=None, help="number of results (default: topK setting)")
    parser.add_argument("--vault", default=None, help="vault directory (default: VAULT_PATH)")
    parser.add_argument("--settings", default=None, help="settings file (default: SETTINGS_PATH)")
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.settings)
    except ConfigError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    try:
        provider = get_embedding_provider(settings)
    except ConfigError as e:
        print(f"WARNING: {e}; using stored embeddings only")
        provider = None

    session = SimilarNotesSession(
        settings=settings,
        note_source=VaultNoteSource(args.vault or VAULT_PATH),
        store=get_vector_store(),
        provider=provider,
        provider_name=EMBED_PROVIDER,
        notify=lambda message: print(f"  {message}"),
    )

    try:
        results = asyncio.run(_run(session, args.path, args.k))
    except ValueError as e:
        print(f"ERROR: Invalid note path: {e}")
        sys.exit(1)

    if not results:
        print(f"No similar notes found for {args.path}")
        return results

    print(f"Notes similar to {args.path}:")
    for result in results:
        print(f"  {result.score:.4f}  {result.path}")
    return results


if __name__ == "__main__":
    main()
