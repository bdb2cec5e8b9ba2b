import argparse
import json
import logging
from pathlib import Path

from track_view_functions import normalize_table, split_view_key, build_view_key
from view_stores import DEFAULT_VIEWS_FILE, CounterStore, JsonFileStore, build_store_from_env

logger = logging.getLogger(__name__)


def load_legacy_counts(path: str | Path):
    """
    Read a legacy counter file into a ``{key: count}`` mapping.

    Args:
        path (str | Path): JSON file written by the old counter endpoint.

    Returns:
        dict[str, int]: Entries with a valid ``<type>_<id>`` key and a positive count.
    """
    source = Path(path)
    try:
        decoded = json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning("%s does not exist, nothing to migrate", source)
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("could not load %s: %s", source, exc)
        return {}

    counts = {}
    for key, count in normalize_table(decoded).items():
        parts = split_view_key(key)
        if not parts or count <= 0:
            logger.info("skipping %r", key)
            continue
        counts[build_view_key(*parts)] = count
    return counts


def migrate_counts(counts: dict, store: CounterStore, dry_run: bool = False):
    """
    Add legacy counts on top of whatever the target store already holds.

    Args:
        counts (dict): Counts produced by ``load_legacy_counts``.
        store (CounterStore): Destination store.
        dry_run (bool): Only report what would be written.

    Returns:
        tuple[int, int]: Number of keys and total views migrated.
    """
    total = 0
    for key, count in counts.items():
        if not dry_run:
            store.increment(key, count)
        total += count
    return len(counts), total


def main(argv=None):
    parser = argparse.ArgumentParser(description="Copy a JSON view counter file into the configured VIEWS_BACKEND store.")
    parser.add_argument("--source", type=str, default=DEFAULT_VIEWS_FILE, help="Legacy counter file to read.")
    parser.add_argument("--dry-run", action="store_true", help="Report without writing to the store.")
    args = parser.parse_args(argv)

    store = build_store_from_env()
    if isinstance(store, JsonFileStore) and store.path.resolve() == Path(args.source).resolve():
        parser.error("source and destination are the same file")

    counts = load_legacy_counts(args.source)
    keys, views = migrate_counts(counts, store, dry_run=args.dry_run)
    action = "Would migrate" if args.dry_run else "Migrated"
    print(f"{action} {keys} keys ({views} views) from {args.source} -> {type(store).__name__}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    raise SystemExit(main())
