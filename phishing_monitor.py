"""Phishing monitor command line.

    python phishing_monitor.py add-domain example.com
    python phishing_monitor.py run
    python phishing_monitor.py threats --filter high
    python phishing_monitor.py export --output export.json
"""

import argparse
import json
import logging
import signal
import sys
import threading

from config import get_config
from services.alert_email import EmailAlertSender
from src.components.phishing_monitor import PhishingMonitor, PhishingMonitorError
from src.components.phishing_monitor.orchestrator import EXPORT_SECTIONS, THREAT_FILTERS
from src.components.phishing_monitor.reporting import export_threats_to_excel, format_threats_table
from src.utils.logging_utils import setup_logging
from src.utils.scheduling import JobScheduler

logger = logging.getLogger(__name__)


def build_monitor(config, scheduler) -> PhishingMonitor:
    sender = EmailAlertSender.from_config(config) if config.alert_sender_email else None
    return PhishingMonitor.from_config(config, scheduler, email_sender=sender)


def parse_setting(assignment: str):
    """Split ``key=value``; values are read as JSON where possible (true, 0.8, 30)."""
    key, sep, raw = assignment.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"Expected key=value, got '{assignment}'")
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw
    return key.strip(), value


def _log_event(event, payload):
    if event == "threat":
        logger.info(f"New threat {payload.id}: {payload.domain} "
                    f"({payload.threat_level.value}, {round(payload.score * 100)}% vs {payload.matched_keyword})")
    elif event == "connection_status":
        logger.info(f"{payload['feed']} status: {payload['status']}")


def run_forever(monitor: PhishingMonitor, scheduler: JobScheduler) -> None:
    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    monitor.add_listener(_log_event)
    scheduler.start()
    monitor.start()
    try:
        while not stop_event.wait(60):
            stats = monitor.stats_snapshot()
            logger.info(f"Certs processed: {stats['certs_processed']}, matched: {stats['certstream_matched']}, "
                        f"threats: {stats['total_threats']}, alerts sent: {stats['alerts_sent']}")
    finally:
        monitor.shutdown()
        scheduler.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Dual-feed phishing domain monitor')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('run', help='Run both feeds until interrupted')

    add = subparsers.add_parser('add-domain', help='Add a domain to the watch-list')
    add.add_argument('domain')
    remove = subparsers.add_parser('remove-domain', help='Remove a domain from the watch-list')
    remove.add_argument('domain')
    subparsers.add_parser('domains', help='List watched domains')

    threats = subparsers.add_parser('threats', help='Show active threats')
    threats.add_argument('--filter', default='all', choices=THREAT_FILTERS)
    dismiss = subparsers.add_parser('dismiss', help='Dismiss a threat by id')
    dismiss.add_argument('threat_id')

    subparsers.add_parser('poll-now', help='Run an opensquat check now (uses daily quota)')
    subparsers.add_parser('reset-usage', help='Reset the opensquat daily usage counter')
    subparsers.add_parser('test-alert', help='Send a test alert email')

    export = subparsers.add_parser('export', help='Export monitor data')
    export.add_argument('--section', choices=EXPORT_SECTIONS)
    export.add_argument('--output', help='File to write (.json, or .xlsx for threats); stdout if omitted')

    settings = subparsers.add_parser('settings', help='Show or change settings')
    settings.add_argument('--set', dest='assignments', action='append', type=parse_setting, default=[],
                          metavar='KEY=VALUE')

    subparsers.add_parser('clear-all', help='Delete watch-list, threats, feed data and usage')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    setup_logging('phishing_monitor', log_level=config.log_level, log_dir=config.log_dir)

    scheduler = JobScheduler()
    monitor = build_monitor(config, scheduler)

    try:
        if args.command == 'run':
            run_forever(monitor, scheduler)
        elif args.command == 'add-domain':
            print(f"Monitoring {monitor.add_domain(args.domain)}")
        elif args.command == 'remove-domain':
            if not monitor.remove_domain(args.domain):
                print(f"{args.domain} is not monitored")
                return 1
        elif args.command == 'domains':
            for domain in monitor.list_domains():
                print(domain)
        elif args.command == 'threats':
            print(format_threats_table(monitor.threats(args.filter)))
        elif args.command == 'dismiss':
            if not monitor.dismiss_threat(args.threat_id):
                print(f"No active threat with id {args.threat_id}")
        elif args.command == 'poll-now':
            summary = monitor.manual_poll()
            print(f"Lookups: {summary.succeeded} ok, {summary.failed} failed, {summary.candidates} candidates"
                  f"{' (daily limit reached)' if summary.quota_exhausted else ''}")
        elif args.command == 'reset-usage':
            monitor.reset_usage()
        elif args.command == 'test-alert':
            return 0 if monitor.send_test_alert() else 1
        elif args.command == 'export':
            if args.output and args.output.endswith('.xlsx'):
                export_threats_to_excel(monitor.threat_store.filter(), args.output)
            else:
                data = json.dumps(monitor.export_snapshot(args.section), indent=2, default=str)
                if args.output:
                    with open(args.output, 'w') as f:
                        f.write(data)
                else:
                    print(data)
        elif args.command == 'settings':
            if args.assignments:
                monitor.update_settings(**dict(args.assignments))
            print(json.dumps(monitor.settings.to_dict(), indent=2))
        elif args.command == 'clear-all':
            monitor.clear_all_data()
    except PhishingMonitorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        if args.command != 'run':
            monitor.alerts.shutdown(wait=True)

    return 0


if __name__ == '__main__':
    sys.exit(main())
