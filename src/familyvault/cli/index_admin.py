"""
Maintenance tasks for the media index.

Run with ``familyvault-admin <task>``, for example::

    familyvault-admin verify-index
    familyvault-admin rebuild-index --env-file .env.production
    familyvault-admin find-duplicate --content-hash abc123 --year 2023 --exhaustive
"""

import os
import sys

from dotenv import load_dotenv
from invoke import Collection, Context, Program, task

from ..logging_config import configure_structured_logging, get_logger
from ..services.media_library import MediaLibrary, get_media_library

logger = get_logger(__name__)


def _load_library(env_file: str) -> MediaLibrary:
    if os.path.exists(env_file):
        load_dotenv(dotenv_path=env_file)
        configure_structured_logging()
        logger.info("environment_loaded", env_file=env_file)
    else:
        configure_structured_logging()
        logger.warning("environment_file_not_found", env_file=env_file)
    return get_media_library()


@task
def rebuild_index(c: Context, env_file: str = ".env"):
    """
    Rebuild the year index from the stored shards.

    Args:
        c (Context): Invoke context.
        env_file (str): Path to the environment file. Default is '.env'.
    """
    library = _load_library(env_file)
    before = library.read_index()
    after = library.rebuild_index()
    print(f"Index rebuilt: {len(before.years)} -> {len(after.years)} years, {after.total_media} records")
    if after.years:
        print("Years: " + ", ".join(str(year) for year in after.years))


@task
def recount(c: Context, env_file: str = ".env"):
    """
    Recompute the cached total record count.

    Args:
        c (Context): Invoke context.
        env_file (str): Path to the environment file. Default is '.env'.
    """
    library = _load_library(env_file)
    total = library.update_index_media_count()
    print(f"Total records: {total}")


@task
def verify_index(c: Context, env_file: str = ".env"):
    """
    Compare the index with the stored shards without changing anything.

    Exits with status 1 when they differ.

    Args:
        c (Context): Invoke context.
        env_file (str): Path to the environment file. Default is '.env'.
    """
    library = _load_library(env_file)
    result = library.verify_index()
    if result.is_consistent:
        print("Index is consistent.")
        return

    if result.missing_years:
        print("Years with records missing from the index: " + ", ".join(map(str, result.missing_years)))
    if result.stale_years:
        print("Indexed years without records: " + ", ".join(map(str, result.stale_years)))
    print("Run 'familyvault-admin rebuild-index' to repair.")
    sys.exit(1)


@task
def find_duplicate(
    c: Context,
    content_hash: str,
    year: int,
    window: int = -1,
    exhaustive: bool = False,
    env_file: str = ".env",
):
    """
    Look up an existing record by content hash.

    Args:
        c (Context): Invoke context.
        content_hash (str): Content hash of the file.
        year (int): Capture year of the file.
        window (int): Years either side of the capture year. Default is the configured window.
        exhaustive (bool): Scan every indexed year. Default is False.
        env_file (str): Path to the environment file. Default is '.env'.
    """
    library = _load_library(env_file)
    match = library.find_duplicate(
        content_hash,
        int(year),
        window=None if int(window) < 0 else int(window),
        exhaustive=exhaustive,
    )
    if match is None:
        print("No duplicate found.")
        return
    print(f"Duplicate of {match.existing_filename} ({match.existing_id}), taken {match.existing_date.isoformat()}")


@task
def duplicate_stats(c: Context, env_file: str = ".env"):
    """
    Report records sharing a content hash across all indexed years.

    Args:
        c (Context): Invoke context.
        env_file (str): Path to the environment file. Default is '.env'.
    """
    library = _load_library(env_file)
    stats = library.duplicate_stats()
    print(f"Records: {stats.total_records}, unique hashes: {stats.unique_hashes}, duplicates: {stats.duplicate_records}")
    for content_hash, media_ids in sorted(stats.groups.items()):
        print(f"- {content_hash}: {', '.join(media_ids)}")


namespace = Collection(rebuild_index, recount, verify_index, find_duplicate, duplicate_stats)

program = Program(namespace=namespace, name="familyvault-admin", binary="familyvault-admin")
