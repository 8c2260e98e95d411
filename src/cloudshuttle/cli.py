"""
Command-line interface for cloudshuttle.

Usage:
    cloudshuttle --config cloudshuttle.yaml list photos/
    cloudshuttle --config cloudshuttle.yaml upload ./photo.jpg photos/photo.jpg
    cloudshuttle --config cloudshuttle.yaml download photos/photo.jpg
    cloudshuttle --config cloudshuttle.yaml delete-folder photos/
    cloudshuttle --config cloudshuttle.yaml search holiday
    cloudshuttle --config cloudshuttle.yaml stats
    cloudshuttle profiles

Without ``--config`` the profile is read from CLOUDSHUTTLE_* environment
variables (and a ``.env`` file in the working directory).
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import StorageError
from .logging_utils import get_logger, setup_logging
from .service import StorageService

logger = get_logger(__name__)


def format_size(num_bytes: Optional[float]) -> str:
    """Human readable byte count."""
    if num_bytes is None:
        return "-"
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def print_event(channel: str, payload: Dict[str, Any]) -> None:
    """Render progress events on stderr."""
    if channel == "upload-progress":
        print(f"\r  {payload['key']}: {payload['percent']:.1f}% ({payload['status']})",
              end="\n" if payload["status"] != "uploading" else "", file=sys.stderr, flush=True)
    elif channel == "download-update":
        task = payload["task"]
        speed = format_size(task.get("speed_bytes_per_sec"))
        print(f"\r  {task['key']}: {task['progress_percent']:.1f}% {speed}/s ({payload['type']})",
              end="", file=sys.stderr, flush=True)


def build_service(args) -> StorageService:
    if args.config:
        return StorageService.from_config_file(args.config, event_sink=print_event)
    return StorageService.from_env(event_sink=print_event)


# ============================================================================
# Commands
# ============================================================================

def list_command(service: StorageService, args) -> int:
    """List one folder level, following pages when --all is given."""
    cursor = None
    while True:
        page = service.list_objects(args.prefix, cursor, None if args.flat else "/")
        for entry in page.entries:
            if entry.is_folder:
                print(f"{'DIR':>10}  {'':19}  {entry.key}")
            else:
                modified = entry.last_modified.strftime("%Y-%m-%d %H:%M:%S") if entry.last_modified else ""
                print(f"{format_size(entry.size):>10}  {modified:19}  {entry.key}")
        if not (args.all and page.has_more):
            break
        cursor = page.next_cursor
    if page.has_more:
        print("(more results; use --all)")
    return 0


def upload_command(service: StorageService, args) -> int:
    key = args.key or Path(args.source).name
    if args.resume:
        future = service.resume_upload(str(args.source), key)
    else:
        future = service.upload_file(str(args.source), key)
    task = future.result()
    print(f"\n{task.destination_key}: {task.status.value}")
    return 0 if task.status.value == "completed" else 1


def download_command(service: StorageService, args) -> int:
    task = service.download_file(args.key).result()
    print(f"\n{task.key}: {task.status.value} -> {task.destination_path}")
    if task.error:
        print(f"  Error: {task.error}")
    return 0 if task.status.value == "completed" else 1


def delete_command(service: StorageService, args) -> int:
    service.delete_object(args.key)
    print(f"Deleted {args.key}")
    return 0


def delete_folder_command(service: StorageService, args) -> int:
    count = service.delete_folder(args.prefix)
    print(f"Deleted {count} objects under {args.prefix}")
    return 0


def mkdir_command(service: StorageService, args) -> int:
    print(f"Created {service.create_folder(args.key)}")
    return 0


def presign_command(service: StorageService, args) -> int:
    url = service.get_presigned_url(args.key, args.ttl)
    if url is None:
        print("This provider cannot generate temporary URLs", file=sys.stderr)
        return 1
    print(url)
    return 0


def search_command(service: StorageService, args) -> int:
    for event in service.iter_search(args.term):
        if event["type"] == "results-chunk":
            for result in event["results"]:
                print(result["key"])
        elif event["type"] == "end":
            print(f"\n{event['total']} matches for '{args.term}'")
        else:
            print(f"Search failed: {event['error']}", file=sys.stderr)
            return 1
    return 0


def stats_command(service: StorageService, args) -> int:
    stats = service.get_bucket_stats()
    print(f"\nBucket: {stats['bucket_name']}")
    print(f"  Objects: {stats['total_count']:,}")
    print(f"  Size: {format_size(stats['total_size'])}")
    if stats.get("storage_quota_bytes"):
        print(f"  Quota: {format_size(stats['storage_quota_bytes'])}")
    return 0


def profiles_command(service: StorageService, args) -> int:
    active = service.profiles.active_id
    for profile in service.profiles.profiles:
        marker = "*" if profile.id == active else " "
        print(f"{marker} {profile.id:20} {profile.type.value:10} {profile.bucket or ''}")
    return 0


def test_command(service: StorageService, args) -> int:
    service.test_connection()
    print(f"Connection to '{service.active_profile.id}' OK")
    return 0


def tasks_command(service: StorageService, args) -> int:
    if args.clear:
        print(f"Cleared {service.clear_finished_downloads()} finished downloads")
    for task in service.upload_tasks():
        print(f"upload    {task.status.value:10} {task.progress_percent:6.1f}%  {task.destination_key}")
    for task in service.download_tasks():
        print(f"download  {task.status.value:10} {task.progress_percent:6.1f}%  {task.key}")
    return 0


def activity_command(service: StorageService, args) -> int:
    if args.cleanup is not None:
        print(f"Deleted {service.activity.cleanup_old_records(args.cleanup)} records")
        return 0
    if args.stats:
        print(json.dumps(service.activity.statistics(), indent=2))
        return 0
    for entry in service.activity.recent(args.limit):
        print(f"{entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.operation:14} {entry.status:10} "
              f"{entry.key or ''}  {entry.message or ''}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudshuttle",
        description="Browse and transfer files across object stores and image hosts",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to profile configuration file (default: CLOUDSHUTTLE_* environment)",
    )
    parser.add_argument("--profile", help="Profile to use instead of the configured active one")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    ls = subparsers.add_parser("list", help="List a folder")
    ls.add_argument("prefix", nargs="?", default="", help="Folder prefix")
    ls.add_argument("--flat", action="store_true", help="List recursively without folders")
    ls.add_argument("--all", action="store_true", help="Follow every page")
    ls.set_defaults(func=list_command)

    upload = subparsers.add_parser("upload", help="Upload a file")
    upload.add_argument("source", type=Path, help="Local file")
    upload.add_argument("key", nargs="?", help="Destination key (default: file name)")
    upload.add_argument("--resume", action="store_true", help="Resume from the stored checkpoint")
    upload.set_defaults(func=upload_command)

    download = subparsers.add_parser("download", help="Download an object")
    download.add_argument("key", help="Object key")
    download.set_defaults(func=download_command)

    delete = subparsers.add_parser("delete", help="Delete an object")
    delete.add_argument("key", help="Object key")
    delete.set_defaults(func=delete_command)

    delete_folder = subparsers.add_parser("delete-folder", help="Delete a folder recursively")
    delete_folder.add_argument("prefix", help="Folder prefix")
    delete_folder.set_defaults(func=delete_folder_command)

    mkdir = subparsers.add_parser("mkdir", help="Create an empty folder")
    mkdir.add_argument("key", help="Folder key")
    mkdir.set_defaults(func=mkdir_command)

    presign = subparsers.add_parser("presign", help="Print a temporary URL")
    presign.add_argument("key", help="Object key")
    presign.add_argument("--ttl", type=int, default=900, help="Lifetime in seconds (default: 900)")
    presign.set_defaults(func=presign_command)

    search = subparsers.add_parser("search", help="Search keys by substring")
    search.add_argument("term", help="Case-insensitive search term")
    search.set_defaults(func=search_command)

    stats = subparsers.add_parser("stats", help="Show bucket statistics")
    stats.set_defaults(func=stats_command)

    profiles = subparsers.add_parser("profiles", help="List configured profiles")
    profiles.set_defaults(func=profiles_command)

    test = subparsers.add_parser("test", help="Test the connection")
    test.set_defaults(func=test_command)

    tasks = subparsers.add_parser("tasks", help="Show persisted transfer tasks")
    tasks.add_argument("--clear", action="store_true", help="Forget completed and failed downloads")
    tasks.set_defaults(func=tasks_command)

    activity = subparsers.add_parser("activity", help="Show recent activity")
    activity.add_argument("--limit", type=int, default=20, help="Number of entries")
    activity.add_argument("--stats", action="store_true", help="Show aggregate statistics")
    activity.add_argument("--cleanup", type=int, metavar="DAYS", help="Delete records older than DAYS")
    activity.set_defaults(func=activity_command)

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(debug=args.verbose)

    if not args.command:
        parser.print_help()
        return 1

    try:
        service = build_service(args)
    except (StorageError, FileNotFoundError) as e:
        logger.error(f"Configuration failed: {e}")
        return 1

    try:
        if args.profile:
            service.switch_profile(args.profile)
        return args.func(service, args)
    except StorageError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
