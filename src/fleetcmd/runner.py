#!/usr/bin/env python3
"""Main entry point for fleetcmd."""

import argparse
import asyncio
import shutil
import sys
from datetime import datetime
from pathlib import Path

from .cluster import Cluster, ExecutionMode, HostStatus, Round
from .colors import color, color_err, color_ok, color_strong
from .config import ClusterConfig, load_config, setup_logging


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run commands on multiple SSH hosts with real-time prefixed output"
    )
    parser.add_argument("config", type=Path, help="Path to YAML configuration file")
    parser.add_argument(
        "--key",
        type=Path,
        help="Override SSH key path from config",
    )
    parser.add_argument(
        "--sequential",
        action="store_true",
        help="Run on one host at a time instead of all at once",
    )
    parser.add_argument(
        "--stop-on-error",
        action="store_true",
        help="Stop at the first failing host",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Kill commands running longer than this many seconds",
    )
    parser.add_argument(
        "--cwd",
        help="Working directory for every host",
    )
    parser.add_argument(
        "--no-logs",
        action="store_true",
        help="Disable logging to files",
    )
    args = parser.parse_args(argv)

    setup_logging()

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    # Override SSH key if provided (applies to all hosts)
    if args.key:
        key_path = args.key.expanduser()
        config.defaults.ssh_key = key_path
        for host in config.hosts:
            host.key = key_path

    # Validate all SSH keys exist
    ssh_keys = {host.key for host in config.hosts if host.key}
    for ssh_key in ssh_keys:
        if not ssh_key.exists():
            print(f"Error: SSH key not found: {ssh_key}", file=sys.stderr)
            return 1

    if args.sequential:
        config.defaults.mode = ExecutionMode.SEQUENTIAL.value
    if args.stop_on_error:
        config.defaults.stop_on_error = True
    if args.timeout is not None:
        config.defaults.timeout = args.timeout

    return asyncio.run(_run(config, cwd=args.cwd, enable_logging=not args.no_logs))


async def _run(config: ClusterConfig, cwd: str | None, enable_logging: bool) -> int:
    """Run every configured command as one round over all hosts."""
    defaults = config.defaults

    def on_status(host: str, status: HostStatus) -> None:
        if status is HostStatus.SUCCESS:
            print(f"{color(host)} Status: {color_ok(status.value)}")
        elif status is HostStatus.FAILED:
            print(f"{color(host)} Status: {color_err(status.value)}")

    cluster = Cluster(
        config.hosts,
        stop_on_error=defaults.stop_on_error,
        on_status=on_status,
    )
    cluster.cwd = cwd

    log_dir = _setup_log_dir(config) if enable_logging else None
    mode = ExecutionMode(defaults.mode)

    failed_hosts: list[str] = []
    for command in config.commands:
        rnd = await cluster.run(command, defaults.timeout, mode)
        await cluster.settle(rnd)
        if log_dir:
            _write_logs(log_dir, rnd)
        _print_summary(rnd)

        for result in rnd.failed:
            if result.host not in failed_hosts:
                failed_hosts.append(result.host)
        if not rnd.ok and cluster.stop_on_error:
            break

    if failed_hosts:
        print(f"\nFailed hosts: {', '.join(failed_hosts)}", file=sys.stderr)
        return 1

    return 0


def _setup_log_dir(config: ClusterConfig) -> Path:
    """Create a timestamped log directory holding a copy of the config."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = config.log_dir / timestamp
    log_dir.mkdir(parents=True, exist_ok=True)

    # Copy the source config file to the log directory
    if config.source_path and config.source_path.exists():
        shutil.copy(config.source_path, log_dir / "config.yaml")
    return log_dir


def _write_logs(log_dir: Path, rnd: Round) -> None:
    """Append each host's recorded output of ``rnd`` to its log file."""
    for result in rnd.results:
        log_file = log_dir / f"{result.index}-{result.host}.log"
        with open(log_file, "a") as f:
            f.write(f"$ {rnd.command}\n")
            if result.result is not None:
                f.write(result.result.stdout)
                for line in result.result.stderr.splitlines():
                    f.write(f"STDERR: {line}\n")
            if result.error is not None:
                f.write(f"ERROR: {result.error}\n")


def _print_summary(rnd: Round) -> None:
    ok = len(rnd.results) - len(rnd.failed)
    line = f"{ok}/{len(rnd.results)} hosts ok: {rnd.command}"
    if rnd.ok:
        print(color_strong(color_ok(line)))
    else:
        print(color_strong(color_err(line)))


if __name__ == "__main__":
    sys.exit(main())
