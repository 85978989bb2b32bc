#!/usr/bin/env python3
"""
timedown: Drift-Corrected Countdown Timers

Command-line runner for the countdown engine. It:
1. Loads countdown definitions from a TOML file and/or the command line
2. Creates them in a Registry and starts them all
3. Logs start, ending and end events (and ticks, if asked to)
4. Optionally serves /health, /status and /metrics over HTTP
5. Exits once every countdown has ended, or on SIGINT/SIGTERM

Usage:
    # Countdowns from a config file
    timedown --config /etc/timedown/config.toml

    # Ad-hoc countdowns
    timedown --countdown session-expiry=15m --countdown auction-close=90s --ending 10s

Config file:
    [defaults]
    refresh = "10ms"
    ending = "5s"

    [output]
    health_port = 8080
    log_ticks = false

    [countdowns]
    session-expiry = "15m"
    auction-close = { duration = "90s", ending = "30s", refresh = "100ms" }
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('timedown')

from .engine.countdown import Countdown
from .engine.registry import Registry
from .timing.duration import format_duration


DEFAULT_CONFIG: Dict[str, Any] = {
    'defaults': {
        'refresh': '10ms',
        'ending': '5s',
    },
    'output': {
        'health_port': 0,
        'bind_address': '127.0.0.1',
        'log_ticks': False,
    },
    'countdowns': {},
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from TOML file, layered over the defaults.

    A missing path (or no path) yields the default configuration.
    """
    config = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path, 'r') as f:
                loaded = toml.load(f)
            for section, values in loaded.items():
                if isinstance(values, dict) and isinstance(config.get(section), dict):
                    config[section].update(values)
                else:
                    config[section] = values
            logger.debug(f"Loaded configuration from {path}")
        else:
            logger.warning(f"Config file {path} not found, using defaults")

    return config


def parse_countdown_arg(value: str) -> tuple:
    """
    Split a NAME=DURATION command-line argument.

    Raises:
        argparse.ArgumentTypeError: if the argument has no '='
    """
    name, sep, duration = value.partition('=')
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=DURATION, got {value!r}")
    return name.strip(), duration.strip()


def countdown_specs(config: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Normalise the [countdowns] section to {name: {duration, refresh, ending}}.

    Entries may be a bare duration or a table; missing options are taken
    from [defaults].
    """
    defaults = config.get('defaults', {})
    specs = {}
    for name, entry in config.get('countdowns', {}).items():
        if isinstance(entry, dict):
            spec = dict(entry)
        else:
            spec = {'duration': entry}
        spec.setdefault('refresh', defaults.get('refresh'))
        spec.setdefault('ending', defaults.get('ending'))
        specs[name] = spec
    return specs


class CountdownRunner:
    """
    Runs a set of configured countdowns to completion.

    Owns the Registry and, when enabled, the health server.
    """

    def __init__(self, config: Dict[str, Any], registry: Optional[Registry] = None):
        """
        Initialize the runner.

        Args:
            config: Configuration dictionary (see load_config)
            registry: Registry to use (default: a new one with a threaded scheduler)
        """
        self.config = config
        self.registry = registry if registry is not None else Registry()
        self.output = config.get('output', {})
        self.log_ticks = bool(self.output.get('log_ticks', False))
        self.health_server = None

        self.pending: set = set()
        self.finished = threading.Event()
        self._lock = threading.Lock()

        self.registry.on('start', self._on_start)
        self.registry.on('stop', self._on_stop)
        self.registry.on('ending', self._on_ending)
        self.registry.on('end', self._on_end)
        self.registry.on('delete', self._on_delete)
        if self.log_ticks:
            self.registry.on('tick', self._on_tick)

        for name, spec in countdown_specs(config).items():
            options = {k: spec[k] for k in ('refresh', 'ending') if spec.get(k) is not None}
            countdown = self.registry.get(name, spec.get('duration'), options)
            if countdown.duration:
                self.pending.add(name)
            else:
                logger.warning(f"Countdown {name!r} has no usable duration, skipping")

        logger.info("=" * 60)
        logger.info("timedown initializing")
        logger.info(f"  Countdowns: {len(self.pending)}")
        for name in sorted(self.pending):
            countdown = self.registry.find(name)
            logger.info(
                f"    {name}: {format_duration(countdown.duration)} "
                f"(refresh {countdown.refresh}ms, ending {format_duration(countdown.ending)})"
            )
        logger.info(f"  Health port: {self.output.get('health_port', 0) or 'disabled'}")
        logger.info("=" * 60)

    def _on_start(self, countdown: Countdown, data: Dict[str, Any]):
        logger.info(f"[{countdown.key}] started, {format_duration(data['remaining_ms'], long=True)} remaining")

    def _on_stop(self, countdown: Countdown, data: Dict[str, Any]):
        logger.info(f"[{countdown.key}] stopped at {data['remaining_ms']}ms")

    def _on_tick(self, countdown: Countdown, data: Dict[str, Any]):
        logger.info(f"[{countdown.key}] {data['remaining_ms']}ms")

    def _on_ending(self, countdown: Countdown, data: Dict[str, Any]):
        logger.info(f"[{countdown.key}] ending, {data['remaining_ms']}ms remaining")

    def _on_end(self, countdown: Countdown, data: Dict[str, Any]):
        logger.info(f"[{countdown.key}] ended")
        self._finish(countdown.key)

    def _on_delete(self, countdown: Countdown, data: Dict[str, Any]):
        logger.debug(f"[{countdown.key}] deleted")
        self._finish(countdown.key)

    def _finish(self, key: str):
        with self._lock:
            self.pending.discard(key)
            if not self.pending:
                self.finished.set()

    def start(self):
        """Start the health server (if configured) and every countdown."""
        port = int(self.output.get('health_port', 0) or 0)
        if port > 0:
            from .output.health_server import HealthServer
            self.health_server = HealthServer(
                port=port,
                bind_address=self.output.get('bind_address', '127.0.0.1')
            )
            self.health_server.set_registry(self.registry)
            self.health_server.start()

        if not self.pending:
            self.finished.set()
        for name in list(self.pending):
            self.registry.start(name)

    def run(self, timeout: Optional[float] = None) -> bool:
        """
        Run until every countdown has ended (blocking).

        Returns:
            True if all countdowns ended, False on interrupt or timeout
        """
        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.finished.set()

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, handle_signal)
            signal.signal(signal.SIGINT, handle_signal)

        self.start()
        try:
            self.finished.wait(timeout)
        finally:
            completed = not self.pending
            self.shutdown()
        return completed

    def shutdown(self):
        """Stop the health server and destroy the registry."""
        if self.health_server:
            self.health_server.stop()
            self.health_server = None
        if self.pending:
            logger.info(f"Abandoning {len(self.pending)} unfinished countdowns: {', '.join(sorted(self.pending))}")
        self.registry.destroy()


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='timedown: Drift-corrected countdown timers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    timedown --config /etc/timedown/config.toml
    timedown --countdown tea=3m --ending 30s
    timedown --countdown build=90s --health-port 8080
        """
    )
    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--countdown',
        action='append',
        type=parse_countdown_arg,
        default=[],
        metavar='NAME=DURATION',
        help='Add a countdown (repeatable), e.g. tea=3m'
    )
    parser.add_argument(
        '--refresh',
        help='Default tick interval, e.g. 100ms (default: 10ms)'
    )
    parser.add_argument(
        '--ending',
        help='Default ending threshold, e.g. 10s (default: 5s)'
    )
    parser.add_argument(
        '--health-port',
        type=int,
        help='HTTP port for health monitoring endpoint (0 to disable)'
    )
    parser.add_argument(
        '--log-ticks',
        action='store_true',
        help='Log every tick'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config)

    # Apply command-line overrides
    if args.refresh:
        config['defaults']['refresh'] = args.refresh
    if args.ending:
        config['defaults']['ending'] = args.ending
    if args.health_port is not None:
        config['output']['health_port'] = args.health_port
    if args.log_ticks:
        config['output']['log_ticks'] = True
    for name, duration in args.countdown:
        config['countdowns'][name] = duration

    if not config['countdowns']:
        parser.error("no countdowns configured (use --countdown or a [countdowns] table)")

    runner = CountdownRunner(config)
    completed = runner.run()
    sys.exit(0 if completed else 1)


if __name__ == '__main__':
    main()
