"""Create a batch from a folder of invoice documents and process it.

Usage:
    python scripts/process_folder.py --vendor NAME --folder PATH [--dry-run]
    python scripts/process_folder.py --resume BATCH_ID

Walks --folder recursively, registers every *.pdf / *.html / *.htm as a file of
a new batch for the named vendor (sorted by path, which fixes processing order),
then runs the batch to completion in this process and prints a per-file report.
With --resume, re-drives the failed files of an existing failed/partial batch.

Requires DATABASE_URL, GEMINI_API_KEY and GEMINI_EXTRACTION_MODEL.
"""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

from dotenv import load_dotenv

# Allow running from backend/ directory without installing the package.
_BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_BACKEND_DIR))

# Load .env from project root (parent of backend/).
load_dotenv(_BACKEND_DIR.parent / ".env")

from invoice_pipeline.db import create_tables, get_session_factory  # noqa: E402
from invoice_pipeline.models.batch_file import FileType  # noqa: E402
from invoice_pipeline.schemas.batch import BatchFileCreate  # noqa: E402
from invoice_pipeline.services import persistence  # noqa: E402
from invoice_pipeline.services.errors import (  # noqa: E402
    AlreadyProcessingError,
    FatalOrchestratorError,
    InvalidStateError,
    NotFoundError,
)
from invoice_pipeline.services.orchestrator import BatchOrchestrator  # noqa: E402
from invoice_pipeline.services.types import BatchRunResult  # noqa: E402

_SUFFIX_TYPES = {".pdf": FileType.PDF, ".html": FileType.HTML, ".htm": FileType.HTML}


def _collect_documents(folder: Path) -> list[BatchFileCreate]:
    return [
        BatchFileCreate(
            filename=path.name,
            file_path=str(path.resolve()),
            file_type=_SUFFIX_TYPES[path.suffix.lower()],
        )
        for path in sorted(folder.rglob("*"))
        if path.is_file() and path.suffix.lower() in _SUFFIX_TYPES
    ]


def _print_report(result: BatchRunResult) -> None:
    for outcome in result["results"]:
        if outcome["error"]:
            print(f"  FAILED     {outcome['filename']}  ({outcome['error']})")
        else:
            print(f"  PROCESSED  {outcome['filename']}  [{outcome['processing_time_ms']} ms]")
    print(
        f"\nBatch {result['batch_id']} {result['status']}: "
        f"{result['processed_count']} processed, {result['failed_count']} failed."
    )


async def _create_batch(vendor: str, folder: Path, files: list[BatchFileCreate]) -> uuid.UUID:
    async with get_session_factory()() as db:
        vendor_id = await persistence.find_vendor_id(db, vendor)
        if vendor_id is None:
            raise NotFoundError(f"Vendor {vendor!r} not found")
        batch = await persistence.create_batch(db, vendor_id, str(folder.resolve()))
        await persistence.add_files(db, batch.id, files)
        await db.commit()
        return batch.id


async def _run(args: argparse.Namespace) -> int:
    await create_tables()
    orchestrator = BatchOrchestrator(get_session_factory())

    if args.resume is not None:
        batch_id = args.resume
        print(f"Resuming batch {batch_id} …")
        result = await orchestrator.resume_batch(batch_id)
    else:
        files = _collect_documents(args.folder)
        print(f"Found {len(files)} document(s) in {args.folder}.")
        if args.dry_run:
            for f in files:
                print(f"  WOULD ADD  {f.file_type:<4}  {f.file_path}")
            return 0
        if not files:
            return 0
        batch_id = await _create_batch(args.vendor, args.folder, files)
        print(f"Created batch {batch_id}; processing …")
        result = await orchestrator.start_batch(batch_id)

    _print_report(result)
    return 0 if result["failed_count"] == 0 else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Process a folder of invoices as one batch.")
    parser.add_argument("--vendor", help="Vendor name (vendors.name) the invoices belong to.")
    parser.add_argument("--folder", type=Path, help="Directory holding PDF/HTML invoices.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the documents that would be added without writing anything.",
    )
    parser.add_argument(
        "--resume", metavar="BATCH_ID", type=uuid.UUID, help="Resume a failed or partial batch."
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.resume is None and (not args.vendor or args.folder is None):
        parser.error("--vendor and --folder are required unless --resume is given")
    if args.folder is not None and not args.folder.is_dir():
        parser.error(f"{args.folder} is not a directory")

    try:
        sys.exit(asyncio.run(_run(args)))
    except (NotFoundError, InvalidStateError, AlreadyProcessingError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(2)
    except FatalOrchestratorError as exc:
        print(f"ABORTED: {exc}", file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
