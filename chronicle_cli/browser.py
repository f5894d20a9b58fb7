"""CLI entry point for the American Chronicle client.

Searches the Chronicling America archive for newspaper pages, prints the
hits, and optionally exports them to CSV or downloads their PDFs.

Examples:
  # First page of hits for a term in two states
  chronicle-search "tsunami wave" --state "New York" --state Colorado

  # Restrict the date range and save the hits
  chronicle-search earthquake --from 1906-04-01 --to 1906-12-31 --export hits.csv

  # Download the PDFs of the first three hits
  chronicle-search "gold rush" --download 3 --log-level DEBUG
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import date, datetime
from typing import List, Optional, TextIO

import pandas as pd

from chronicle.core.config import CONFIG_ENV_VAR, get_config
from chronicle.core.network import HttpTransport
from chronicle.errors import ChronicleError, InvalidParameterError
from chronicle.model import PageHit, SearchParameters, SearchResults
from chronicle.page_service import PageDownloadService
from chronicle.search_service import SearchService

CLI_CONTEXT_ID = "cli"

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}; expected YYYY-MM-DD") from e


def create_cli_parser() -> argparse.ArgumentParser:
    """Create argument parser for the search CLI.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        description="American Chronicle - search historical newspaper pages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("term", help="Search term (words are matched near each other).")
    parser.add_argument(
        "--state",
        action="append",
        default=[],
        dest="states",
        help="Restrict to a state; repeat for several states.",
    )
    parser.add_argument("--from", dest="earliest", type=_parse_date, default=None,
                        help="Earliest issue date (YYYY-MM-DD).")
    parser.add_argument("--to", dest="latest", type=_parse_date, default=None,
                        help="Latest issue date (YYYY-MM-DD).")
    parser.add_argument("--page", type=int, default=1, help="Result page to fetch.")
    parser.add_argument("--export", default=None, help="Write the hits to this CSV file.")
    parser.add_argument("--download", type=int, default=0, metavar="N",
                        help="Download the PDFs of the first N hits.")
    parser.add_argument("--output_dir", default=None, help="Directory for downloaded pages.")
    parser.add_argument("--config", default=None, help="Path to JSON config file.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    return parser


def print_results(results: SearchResults, page: int, out: TextIO = sys.stdout) -> None:
    """Print one line per hit plus pagination info."""
    if not results.items:
        print("No pages found.", file=out)
        return
    for idx, hit in enumerate(results.items, start=results.start_index or 1):
        issued = hit.issue_date.isoformat() if hit.issue_date else (hit.date or "????")
        print(f"{idx:4d}. {issued}  {hit.title}  {hit.pdf_url or '-'}", file=out)
    print(
        f"Page {page}: hits {results.start_index}-{results.end_index} of {results.total_items}",
        file=out,
    )
    if results.next_page:
        print(f"Next page: --page {results.next_page}", file=out)


def export_results(results: SearchResults, path: str) -> str:
    """Write hits to a CSV file.

    Returns:
        The path written
    """
    df = pd.DataFrame(results.to_records(), columns=["id", "title", "date", "sequence", "lccn", "states", "pdf_url"])
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info("Exported %d hit(s) to %s", len(df), path)
    return path


def download_hits(service: PageDownloadService, hits: List[PageHit]) -> List[str]:
    """Download the PDFs of hits concurrently and wait for all of them.

    Returns:
        Paths of the pages that were downloaded
    """
    def _progress(url: str):
        def _report(received: int, total: Optional[int]) -> None:
            logger.debug("%s: %d/%s bytes", url, received, total if total is not None else "?")
        return _report

    futures = []
    for hit in hits:
        url = hit.pdf_url
        if not url:
            logger.warning("Skipping hit without an archive path: %r", hit.title)
            continue
        futures.append((url, service.download_page(url, progress=_progress(url))))
    paths: List[str] = []
    for url, future in futures:
        try:
            paths.append(future.result())
        except ChronicleError as e:
            logger.error("Could not download %s: %s", url, e)
    return paths


def run_cli(args: argparse.Namespace, out: TextIO = sys.stdout) -> int:
    """Run a search (and optional export/download) for parsed arguments.

    Returns:
        Process exit code
    """
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    # Reduce noisy retry logs from urllib3
    logging.getLogger("urllib3").setLevel(logging.ERROR)

    if args.config:
        os.environ[CONFIG_ENV_VAR] = args.config
        get_config(force_reload=True)

    params = SearchParameters(
        term=args.term,
        states=tuple(args.states),
        earliest_date=args.earliest,
        latest_date=args.latest,
    )

    with HttpTransport() as transport:
        searcher = SearchService(transport=transport)
        try:
            results = searcher.search(params, page=args.page, context_id=CLI_CONTEXT_ID)
        except InvalidParameterError as e:
            logger.error("Invalid search: %s", e)
            return 2
        except ChronicleError as e:
            logger.error("Search failed: %s", e)
            return 1

        print_results(results, args.page, out=out)

        if args.export:
            export_results(results, args.export)

        if args.download > 0 and results.items:
            downloader = PageDownloadService(transport=transport, output_dir=args.output_dir)
            try:
                paths = download_hits(downloader, results.items[: args.download])
            except KeyboardInterrupt:
                cancelled = downloader.cancel_all()
                logger.warning("Interrupted; cancelled %d download(s)", cancelled)
                raise
            for path in paths:
                print(f"Saved {path}", file=out)

    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Console script entry point."""
    parser = create_cli_parser()
    args = parser.parse_args(argv)
    try:
        code = run_cli(args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
