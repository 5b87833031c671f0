#!/usr/bin/env python3
"""
Continuous monitoring example for the RFID scanner service (no web server)
"""

import sys
import time
import signal
import logging
from pathlib import Path
from collections import defaultdict

# Add the parent directory to the path so we can import the package
sys.path.insert(0, str(Path(__file__).parent.parent))

from rfid_scanner import ReaderService, ScanSink
from rfid_scanner.config import get_config

class ConsoleSink(ScanSink):
    """Prints scanner events to the terminal"""

    def __init__(self):
        self.scan_counts = defaultdict(int)

    def status_changed(self, status, tag_id=None):
        print(f"Status: {status}" + (f" ({tag_id})" if tag_id else ""))

    def scan_confirmed(self, result):
        self.scan_counts[result.tag_id] += 1
        print(f"[{result.last_at.strftime('%H:%M:%S')}] Tag: {result.tag_id}")
        print(f"         Status: {result.status.value}")
        print(f"         Held for: {result.duration_ms} ms")
        print(f"         Count: {self.scan_counts[result.tag_id]}")
        print("-" * 40)

    def reader_connected(self, path):
        print(f"Reader connected on {path}")

    def reader_disconnected(self):
        print("Reader disconnected, waiting for it to come back...")

    def reader_error(self, message):
        print(f"Reader error: {message}")

def main():
    config = get_config('development')
    logging.basicConfig(level=logging.WARNING, format=config.LOG_FORMAT)

    sink = ConsoleSink()
    service = ReaderService.from_config(config, sink=sink)

    running = True

    def signal_handler(signum, frame):
        nonlocal running
        print(f"\nReceived signal {signum}, shutting down...")
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    print("RFID scanner - Continuous Monitoring")
    print("=" * 50)
    print("Hold a tag near the antenna; press Ctrl+C to stop")
    print()

    service.start()
    try:
        while running:
            time.sleep(0.5)
    finally:
        service.stop()

    print("\nSummary")
    for tag_id, count in sorted(sink.scan_counts.items()):
        print(f"  {tag_id}: {count} scan(s)")
    return 0

if __name__ == "__main__":
    sys.exit(main())
