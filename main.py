#!/usr/bin/env python3
"""
Main entry point for the site mirror.
"""

import argparse
import sys
from pathlib import Path
from typing import Callable, Optional

from sitemirror import __version__
from sitemirror.crawler.scheduler import CrawlerScheduler, RunState
from sitemirror.utils.config import Config, load_config
from sitemirror.utils.logger import log_system_info, setup_logging
from sitemirror.utils.report import format_report

FINISHED_STATES = (
    RunState.INCORRECT_URL,
    RunState.OUTPUT_DIR_EXIST,
    RunState.OUTPUT_DIR_ERROR,
    RunState.SCAN_ERROR,
    RunState.COMPLETE,
)


class MirrorApp:
    """Line-oriented front end for the crawler scheduler."""

    def __init__(self, config: Config, report_interval: float = 2.0,
                 prompt: Callable[[str], str] = input, out=None):
        self.config = config
        self.report_interval = report_interval
        self.prompt = prompt
        self.out = out or sys.stdout
        self.scheduler = CrawlerScheduler(config)

    def say(self, text: str = ""):
        print(text, file=self.out, flush=True)

    def run_once(self, url: str, overwrite: bool = False,
                 max_retries: Optional[int] = None, interactive: bool = False) -> RunState:
        """Mirror one site, asking about overwrites when interactive."""
        self.scheduler.start(url, overwrite=overwrite, max_retries=max_retries)
        state = self._watch()

        if state is RunState.OUTPUT_DIR_EXIST and interactive:
            answer = self.prompt(f"Already exists, overwrite? (y/n) \"{self.scheduler.output_dir}\" ")
            if answer.strip().lower().startswith('y'):
                self.scheduler.start(url, overwrite=True, max_retries=max_retries)
                state = self._watch()
            else:
                self.say("Cancelled")
                return state

        self._print_outcome(state)
        return state

    def interactive(self, max_retries: Optional[int] = None):
        """Prompt for sites until end of input."""
        while True:
            self.say("-" * 26)
            try:
                url = self.prompt("Enter the URL of a site to copy: ")
            except EOFError:
                return
            url = url.strip()
            if not url:
                continue
            self.run_once(url, max_retries=max_retries, interactive=True)

    def _watch(self) -> RunState:
        while True:
            if self.scheduler.wait(self.report_interval):
                return self.scheduler.state
            if self.scheduler.state is RunState.SCANNING:
                self.say(format_report(self.scheduler.snapshot_report(include_all=False)))
                self.say()

    def _print_outcome(self, state: RunState):
        if state is RunState.COMPLETE:
            self.say(format_report(self.scheduler.snapshot_report(include_all=True)))
            self.say(f"{state.label}: {self.scheduler.output_dir}")
        elif state in FINISHED_STATES:
            self.say(f"{state.label}: {self.scheduler.last_error}")
        else:
            raise RuntimeError(f"Scanner returned in unexpected state: {state!r}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Site Mirror",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                               # Prompt for sites interactively
  python main.py --url example.com             # Mirror one site and exit
  python main.py --url example.com --overwrite # Replace an existing copy
  python main.py --config my_config.yaml       # Use a custom config
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml, built-in defaults if missing)'
    )

    parser.add_argument(
        '--url',
        help='Site to mirror; without it the program prompts for sites'
    )

    parser.add_argument(
        '--overwrite',
        action='store_true',
        help='Replace an existing output directory without asking'
    )

    parser.add_argument(
        '--max-retries',
        type=int,
        help='Retries for failed requests, not counting the first attempt'
    )

    parser.add_argument(
        '--report-interval',
        type=float,
        default=2.0,
        help='Seconds between progress reports (default: 2)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Site Mirror {__version__}'
    )

    args = parser.parse_args()
    if args.max_retries is not None and args.max_retries < 0:
        parser.error("--max-retries must be non-negative")

    try:
        if Path(args.config).exists():
            config = load_config(args.config)
        else:
            config = Config()
    except (OSError, ValueError, TypeError) as e:
        print(f"Error: invalid configuration '{args.config}': {e}")
        return 1

    setup_logging(config.logging)
    log_system_info()

    app = MirrorApp(config, report_interval=args.report_interval)
    if config.monitoring.metrics_enabled:
        app.scheduler.monitor.metrics.start_server()

    app.say(f"Welcome to Site Mirror v:{__version__}")
    try:
        if args.url:
            state = app.run_once(args.url, overwrite=args.overwrite, max_retries=args.max_retries)
            return 0 if state is RunState.COMPLETE else 1
        app.interactive(max_retries=args.max_retries)
        return 0
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
