#!/usr/bin/env python3
"""
vfio-preflight - Command Line Interface

Checks whether the host is ready for PCI/USB passthrough and shows
which host devices libvirt domains have assigned.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from common.exceptions import CollectionError, DomainNotFoundError, HypervisorError
from common.logging_config import setup_logging
from hardware_detect.host_facts import HostFactsCollector, HostPaths
from vm_manager.core.connection import LibvirtConnection
from vm_manager.core.hostdev_extractor import HostDeviceExtractor

from .checker import RequirementChecker
from .report import (
    CheckResult,
    ConsoleReportSink,
    LoggingReportSink,
    MultiReportSink,
    RecordingReportSink,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_NOT_FOUND = 2


def cmd_check(args) -> int:
    """Run the passthrough requirement checks."""
    if not args.root and not sys.platform.startswith("linux"):
        print("FATAL: This tool only supports Linux systems", file=sys.stderr)
        return EXIT_FATAL

    paths = HostPaths.from_root(args.root) if args.root else HostPaths()
    collector = HostFactsCollector(paths)

    recorder = RecordingReportSink()
    sinks = [recorder]
    if not args.json:
        sinks.append(ConsoleReportSink())
    if args.log_file:
        sinks.append(LoggingReportSink())
    sink = MultiReportSink(*sinks)

    try:
        facts = collector.collect()
        cmdline = collector.read_cmdline()
    except CollectionError as e:
        logger.debug(f"Host fact collection failed: {e}")
        sink.report(CheckResult.from_error("collect", e))
        _print_json_results(args, recorder, ready=False)
        return EXIT_FATAL

    outcome = RequirementChecker(collector, sink).run(facts, cmdline)
    _print_json_results(args, recorder, ready=outcome.ready)

    return EXIT_FATAL if outcome.fatal else EXIT_OK


def _print_json_results(args, recorder: RecordingReportSink, ready: bool) -> None:
    if not args.json:
        return
    print(json.dumps({
        "ready": ready,
        "results": [r.to_dict() for r in recorder.results],
    }, indent=2))


def cmd_domains(args) -> int:
    """List libvirt domains."""
    try:
        extractor = HostDeviceExtractor(args.uri)
        with extractor.session() as conn:
            domains = extractor.list_domains(conn)
    except (HypervisorError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL

    if args.json:
        print(json.dumps([asdict(d) for d in domains], indent=2))
        return EXIT_OK

    for domain in domains:
        domain_id = "-" if domain.id is None else domain.id
        print(f"Domain {domain_id} {domain.name}")
    return EXIT_OK


def cmd_hostdevs(args) -> int:
    """Show host devices assigned to a domain."""
    try:
        devices = HostDeviceExtractor(args.uri).domain_host_devices(args.domain)
    except DomainNotFoundError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except (HypervisorError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL

    if args.json:
        print(json.dumps([
            {**asdict(d), "type": d.type.value} for d in devices
        ], indent=2))
        return EXIT_OK

    if not devices:
        print(f"No PCI/USB host devices assigned to domain '{args.domain}'")
        return EXIT_OK

    print(f"Host devices assigned to domain '{args.domain}': {len(devices)}")
    for device in devices:
        managed = " (managed)" if device.managed else ""
        print(f"  • {device.display_name}{managed}")
        if args.xml:
            for line in device.xml.splitlines():
                print(f"      {line}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vfio-preflight",
        description="PCI/USB passthrough readiness checker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vfio-preflight                    # Check host requirements
  vfio-preflight domains            # List libvirt domains
  vfio-preflight hostdevs win10     # Show devices assigned to a domain
  vfio-preflight --json check       # Machine-readable results
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Show debug logging")
    parser.add_argument("--log-file", type=Path,
                        help="Also write debug logs to this file")
    parser.add_argument("--log-json", action="store_true",
                        help="Write the log file as JSON lines")
    parser.add_argument("-j", "--json", action="store_true",
                        help="Output as JSON")
    parser.add_argument("--uri", default=LibvirtConnection.SYSTEM_URI,
                        help="libvirt connection URI (default: %(default)s)")
    parser.add_argument("--root", type=Path,
                        help="Read /proc and /sys below this directory instead of /")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    check_parser = subparsers.add_parser("check", help="Check passthrough requirements")
    check_parser.set_defaults(func=cmd_check)

    domains_parser = subparsers.add_parser("domains", help="List libvirt domains")
    domains_parser.set_defaults(func=cmd_domains)

    hostdevs_parser = subparsers.add_parser("hostdevs", help="Show assigned host devices")
    hostdevs_parser.add_argument("domain", help="Domain name")
    hostdevs_parser.add_argument("-x", "--xml", action="store_true",
                                 help="Print the raw <hostdev> XML")
    hostdevs_parser.set_defaults(func=cmd_hostdevs)

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Check results reach the terminal through ConsoleReportSink already
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        log_file=args.log_file,
        json_logs=args.log_json,
        console_exclude=(LoggingReportSink.LOGGER_NAME,),
    )

    if args.command is None:
        return cmd_check(args)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
