#!/usr/bin/env python3
"""
Command-line entry point for the site crawler.
"""

import asyncio
import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from sitecrawl import __version__
from sitecrawl.crawler.orchestrator import CrawlOrchestrator, CrawlJob, CrawlResult, ProgressEvent
from sitecrawl.crawler.services import CrawlServices
from sitecrawl.storage.chunk_store import FileChunkStore
from sitecrawl.utils.config import Config, load_config
from sitecrawl.utils.logger import setup_logging, log_system_info


class CrawlerApp:
    """Runs one crawl job from the command line."""

    def __init__(self):
        self.services: Optional[CrawlServices] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._request_shutdown, signum)
            except NotImplementedError:
                # Not supported on Windows event loops
                signal.signal(signum, lambda s, f: self._request_shutdown(s))

    def _request_shutdown(self, signum):
        self.logger.info(f"Received signal {signum}, initiating shutdown...")
        self._shutdown_event.set()

    async def _print_progress(self, event: ProgressEvent):
        if event.completed_page is not None:
            page = event.completed_page
            status = f"error: {page.error}" if page.error else f"{len(page.content)} chars"
            self.logger.info(f"[{event.current}/{event.total}] {page.url} ({status})")
        else:
            self.logger.info(f"[{event.current}/{event.total}] {event.phase.value} {event.current_url}")

    async def run(self, config: Config, job: CrawlJob, output: Optional[str] = None,
                  dry_run: bool = False) -> int:
        """Run a crawl job and write its results."""
        self.setup_signal_handlers()

        self.logger.info("=== SITE CRAWLER STARTING ===")
        self.logger.info(f"Start URL: {job.start_url}")
        self.logger.info(f"Max pages: {job.max_pages}")
        self.logger.info(f"Crawl subpages: {job.crawl_subpages}")
        self.logger.info(f"Cache backend: {config.cache.backend} (enabled={job.use_cache})")
        self.logger.info(f"Browser pool: {'enabled' if config.browser_pool.enabled else 'disabled'}")

        try:
            self.services = CrawlServices.create(config)

            if dry_run:
                self.logger.info("DRY RUN MODE: No actual crawling will be performed")
                await self._dry_run(job)
                return 0

            await self.services.start()

            chunk_store = self.services.chunk_store
            if job.persistence_enabled and isinstance(chunk_store, FileChunkStore):
                if not await chunk_store.source_exists(job.source_id):
                    await chunk_store.register_source(job.source_id, {'url': job.start_url})

            orchestrator = CrawlOrchestrator(
                job,
                self.services,
                on_progress=self._print_progress,
                domain_delay=config.crawler.domain_delay,
                min_content_length=config.crawler.min_content_length,
                max_content_length=config.crawler.max_content_length,
                chunk_size=config.storage.chunk_size,
                chunk_overlap=config.storage.chunk_overlap
            )

            crawl_task = asyncio.create_task(orchestrator.run())
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            done, pending = await asyncio.wait(
                [crawl_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            if crawl_task not in done:
                self.logger.info("Shutdown requested, crawl abandoned")
                return 1

            results = crawl_task.result()
            self._write_results(results, output)
            self.logger.info(f"Crawl stats: {orchestrator.get_stats()}")
            if self.services.monitor:
                self.logger.info(f"Metrics: {self.services.monitor.get_summary()}")

            return 0 if results and not all(r.error for r in results) else 1

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.services:
                await self.services.close()
            self.logger.info("=== SITE CRAWLER FINISHED ===")

    def _write_results(self, results: List[CrawlResult], output: Optional[str]):
        payload = json.dumps([r.to_dict() for r in results], ensure_ascii=False, indent=2)
        if output:
            Path(output).parent.mkdir(parents=True, exist_ok=True)
            Path(output).write_text(payload, encoding='utf-8')
            self.logger.info(f"Wrote {len(results)} results to {output}")
        else:
            print(payload)

    async def _dry_run(self, job: CrawlJob):
        """Check configuration and a single HTTP fetch."""
        self.logger.info("Testing fetcher configuration...")
        async with self.services.http_fetcher as fetcher:
            result = await fetcher.fetch(job.start_url)
            if result.error:
                self.logger.warning(f"Test fetch failed: {result.error}")
            else:
                self.logger.info(f"✓ Test fetch successful: {result.status_code}")

        if self.services.render_cache and self.services.render_cache.backend is not None:
            self.logger.info("Testing cache backend...")
            try:
                await self.services.render_cache.backend.get(job.start_url)
                self.logger.info("✓ Cache backend reachable")
            except Exception as e:
                self.logger.error(f"✗ Cache backend failed: {e}")

        self.logger.info("Dry run completed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Site Crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py https://example.com                    # Crawl up to 10 pages
  python main.py https://example.com --max-pages 50     # Crawl up to 50 pages
  python main.py https://example.com --no-subpages      # Only the start page
  python main.py https://example.com -o out/site.json   # Write results to a file
  python main.py https://example.com --dry-run          # Test configuration only
        """
    )

    parser.add_argument('url', help='Start URL')
    parser.add_argument('--config', default='config.yaml',
                        help='Path to configuration file (default: config.yaml)')
    parser.add_argument('--max-pages', type=int, help='Maximum number of pages to crawl')
    parser.add_argument('--no-subpages', action='store_true', help='Do not follow links')
    parser.add_argument('--full-page', action='store_true',
                        help='Extract the whole <body> instead of the main content area')
    parser.add_argument('--no-cache', action='store_true', help='Bypass the render cache')
    parser.add_argument('--source-id', help='Source id for progressive chunk persistence')
    parser.add_argument('--agent-id', help='Agent id for progressive chunk persistence')
    parser.add_argument('--project-id', help='Project id for progressive chunk persistence')
    parser.add_argument('-o', '--output', help='Write results JSON to this file')
    parser.add_argument('--json-logs', action='store_true', help='Emit JSON formatted logs')
    parser.add_argument('--dry-run', action='store_true',
                        help='Test configuration without actually crawling')
    parser.add_argument('--version', action='version', version=f'Site Crawler {__version__}')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.max_pages is not None and args.max_pages < 1:
        print("Error: --max-pages must be at least 1")
        return 1

    config_path = Path(args.config)
    try:
        if config_path.exists():
            config = load_config(str(config_path))
        elif args.config != 'config.yaml':
            print(f"Error: Configuration file '{args.config}' not found.")
            return 1
        else:
            config = Config()
    except ValueError as e:
        print(f"Error: Invalid configuration: {e}")
        return 1

    setup_logging(config.logging, enable_json=True if args.json_logs else None)
    log_system_info()

    job = CrawlJob(
        start_url=args.url,
        max_pages=config.crawler.max_pages if args.max_pages is None else args.max_pages,
        crawl_subpages=config.crawler.crawl_subpages and not args.no_subpages,
        full_page_content=config.crawler.full_page_content or args.full_page,
        use_cache=config.crawler.use_cache and not args.no_cache,
        source_id=args.source_id,
        agent_id=args.agent_id,
        project_id=args.project_id
    )

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(config, job, output=args.output, dry_run=args.dry_run))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
