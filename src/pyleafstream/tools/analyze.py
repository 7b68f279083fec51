#!/usr/bin/env python3
"""Decode captured external control stream datagrams."""

from __future__ import annotations

import argparse
import sys
from typing import Iterable, TextIO

from construct import ConstructError

from pyleafstream.protocol import SUPPORTED_EXT_CONTROL_VERSIONS, parse_stream_frame


def format_frame(version, data, verbose=False):
    """
    Format one datagram as a panel/colour table.

    Args:
        version: External control protocol version
        data: Raw datagram bytes
        verbose: Include transition time and white channel

    Returns:
        List of formatted strings
    """
    frame = parse_stream_frame(version, data)
    lines = [f"  Panels:   {frame.panel_count}"]
    for panel in frame.panels:
        line = f"  {panel.panel_id:>6}  #{panel.r:02x}{panel.g:02x}{panel.b:02x}"
        if verbose:
            line += f"  w={panel.w}  transition={panel.transition_time * 100}ms"
        lines.append(line)
    return lines


def read_datagrams(stream: TextIO) -> Iterable[bytes]:
    """Yield datagrams from hex lines, skipping blanks and '#' comments."""
    for line in stream:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        yield bytes.fromhex(line.replace(":", " "))


def main():
    parser = argparse.ArgumentParser(
        description="Decode external control datagrams (one hex string per line)"
    )
    parser.add_argument("hex_file", nargs="?", default="-", help="File with hex datagrams (default: stdin)")
    parser.add_argument(
        "--ext-version",
        type=int,
        default=2,
        choices=sorted(SUPPORTED_EXT_CONTROL_VERSIONS),
        help="External control protocol version (default: 2)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show white channel and transition time"
    )
    args = parser.parse_args()

    stream = sys.stdin if args.hex_file == "-" else open(args.hex_file, "r")
    errors = 0
    try:
        for msg_num, data in enumerate(read_datagrams(stream)):
            print(f"\n[Frame #{msg_num}] {len(data)} bytes")
            try:
                for line in format_frame(args.ext_version, data, verbose=args.verbose):
                    print(line)
            except ConstructError as e:
                errors += 1
                print(f"  [!] Decode error: {e}")
                print(f"  Raw:      {data[:16].hex(' ')}")
    except ValueError as e:
        print(f"[!] Invalid hex input: {e}", file=sys.stderr)
        return 1
    finally:
        if stream is not sys.stdin:
            stream.close()

    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
