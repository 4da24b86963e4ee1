#!/usr/bin/env python3
"""
Receipt Print Agent - prints delivery receipts on the machine the printer is plugged into
"""

import argparse
import json
import logging
import sys

from receipt_agent import __version__
from receipt_agent.agent import PrintAgent
from receipt_agent.config import ConfigError, load_config
from receipt_agent.device_detector import DeviceDetector
from receipt_agent.errors import JobNotFoundError, QueueError
from receipt_agent.logging_config import setup_logging
from receipt_agent.platform_caps import probe_capabilities
from receipt_agent.poller import QueuePoller
from receipt_agent.server import create_server


logger = logging.getLogger(__name__)


def cmd_serve(config):
    agent = PrintAgent(config)
    agent.start()
    server = create_server(agent)
    host, port = server.server_address[:2]

    print("=" * 50)
    print(f"  Receipt Print Agent {__version__}")
    print("=" * 50)
    print(f"Listening on http://{host}:{port}")
    print(f"Print queue: {agent.store.queue_dir}")
    print(f"Platform: {agent.capabilities.platform}")
    print("=" * 50)
    print("Press Ctrl+C to stop")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        server.server_close()
        agent.stop()
    return 0


def cmd_poll(config, job_id=None):
    if not config.get('queue_url'):
        print("queue_url is not set in config.json", file=sys.stderr)
        return 2
    agent = PrintAgent(config)
    agent.notifier.start()
    poller = QueuePoller(agent.client, agent.handle_incoming_job,
                         interval=config.get('poll_interval_seconds', 2))
    try:
        if job_id is not None:
            result = poller.poll(job_id)
            if result is None:
                print("Queue host did not answer", file=sys.stderr)
                return 1
            print(json.dumps(result, indent=2))
            return 0 if result.get('success') else 1
        poller.run()
    except JobNotFoundError as e:
        print(e, file=sys.stderr)
        return 1
    except QueueError as e:
        print(f"Queue error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        poller.stop()
    finally:
        agent.notifier.drain(timeout=10)
        agent.notifier.stop()
    return 0


def cmd_detect(config):
    caps = probe_capabilities(config)
    detector = DeviceDetector(
        caps,
        vendor_ids=config.get('usb_vendor_ids'),
        printer_name=config.get('printer_name'),
        command_timeout=config.get('command_timeout_seconds', 10),
    )
    result = detector.detect_devices()
    print(json.dumps({'capabilities': caps.to_dict(), **result.summary()}, indent=2))
    return 0 if result.ok else 1


def cmd_test_print(config):
    agent = PrintAgent(config)
    result = agent.test_print()
    print(json.dumps(result, indent=2))
    return 0 if result['success'] else 1


def build_parser():
    parser = argparse.ArgumentParser(description='Receipt Print Agent')
    parser.add_argument('--config', help='path to config.json')
    parser.add_argument('--verbose', '-v', action='store_true', help='debug logging')
    sub = parser.add_subparsers(dest='command')
    sub.add_parser('serve', help='run the HTTP listener and print queue')
    poll = sub.add_parser('poll', help='pull and print jobs from a remote queue')
    poll.add_argument('--job-id', help='fetch and print a single job')
    sub.add_parser('detect', help='list detected printers')
    sub.add_parser('test-print', help='print a sample receipt')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(e, file=sys.stderr)
        return 2

    setup_logging(config.get('log_path'),
                  level='DEBUG' if args.verbose else config.get('log_level', 'INFO'))

    command = args.command or 'serve'
    if command == 'serve':
        return cmd_serve(config)
    if command == 'poll':
        return cmd_poll(config, args.job_id)
    if command == 'detect':
        return cmd_detect(config)
    return cmd_test_print(config)


if __name__ == '__main__':
    sys.exit(main())
