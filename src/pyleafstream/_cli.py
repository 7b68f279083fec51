"""CLI application for Nanoleaf external control streaming.

This module provides a command-line interface for discovering and pairing with
devices, inspecting them, and streaming images, solid colours or random noise to
their panels.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import random
import sys
import time
from typing import TYPE_CHECKING, Sequence, cast

from PIL import Image

from pyleafstream.client import (
    NanoleafDevice,
    add_authorization,
    discover,
    get_properties,
    identify,
)
from pyleafstream.config import API_PORT, DeviceConfig
from pyleafstream.exceptions import AuthPending, NanoleafError, WriteError
from pyleafstream.layout import PanelDescriptor
from pyleafstream.stream import RGB

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

# Longest side of the image raster that panel positions are sampled from
SAMPLE_SIZE = 256


def parse_rgb_color(color_str: str) -> RGB:
    """Parse a colour string to an RGB triplet.

    Accepts formats:
        - Hex: "#ff8000" or "ff8000"
        - RGB: "r,g,b" where each is 0-255

    Raises:
        ValueError: If format is invalid
    """
    color_str = color_str.strip()

    if "," in color_str:
        parts = color_str.split(",")
        if len(parts) != 3:
            raise ValueError(f"RGB format requires 3 components, got {len(parts)}")
        r, g, b = (int(p.strip()) for p in parts)
        if not (0 <= r <= 255 and 0 <= g <= 255 and 0 <= b <= 255):
            raise ValueError("RGB values must be 0-255")
        return (r, g, b)

    color_str = color_str.lstrip("#")
    if len(color_str) != 6:
        raise ValueError(f"Hex colour must have 6 digits, got {color_str!r}")
    value = int(color_str, 16)
    return ((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)


def generate_random_colors(count: int) -> list[RGB]:
    """Generate one random colour per panel."""
    return [(random.randrange(256), random.randrange(256), random.randrange(256)) for _ in range(count)]


def sample_image_colors(image_path: str, panels: Sequence[PanelDescriptor]) -> list[RGB]:
    """Load an image and pick the colour under each panel's centre.

    The image is resized to cover the bounding box of the panel layout while
    preserving aspect ratio, then center-cropped. Layout y grows upwards, image
    rows grow downwards.

    Args:
        image_path: Path to image file
        panels: Panels in stream order

    Returns:
        One RGB triplet per panel, in the same order
    """
    min_x = min(p.x for p in panels)
    max_x = max(p.x for p in panels)
    min_y = min(p.y for p in panels)
    max_y = max(p.y for p in panels)
    span_x = max(max_x - min_x, 1)
    span_y = max(max_y - min_y, 1)

    scale = SAMPLE_SIZE / max(span_x, span_y)
    width = max(int(span_x * scale), 1)
    height = max(int(span_y * scale), 1)

    img_raw = Image.open(image_path)
    img: PILImage
    if img_raw.mode != "RGB":
        img = img_raw.convert("RGB")
    else:
        img = img_raw

    target_aspect = width / height
    img_aspect = img.width / img.height
    if img_aspect > target_aspect:
        new_height = height
        new_width = max(int(height * img_aspect), width)
    else:
        new_width = width
        new_height = max(int(width / img_aspect), height)

    img = img.resize((new_width, new_height), Image.Resampling.LANCZOS)
    left = (new_width - width) // 2
    top = (new_height - height) // 2
    img = img.crop((left, top, left + width, top + height))

    pixels = img.load()
    assert pixels is not None, "Failed to load image pixels"

    colors: list[RGB] = []
    for panel in panels:
        px = min(int((panel.x - min_x) * scale), width - 1)
        py = min(int((max_y - panel.y) * scale), height - 1)
        r, g, b = cast(tuple[int, int, int], pixels[px, py])
        colors.append((r, g, b))
    return colors


def build_config(args: argparse.Namespace) -> DeviceConfig:
    """Device configuration from command line flags and environment."""
    brightness = getattr(args, "brightness", None)
    return DeviceConfig(
        host=args.host or "",
        token=getattr(args, "token", None) or "",
        port=args.port,
        brightness_overwrite=brightness is not None,
        brightness=100 if brightness is None else brightness,
        top_down=getattr(args, "top_down", None),
        left_right=getattr(args, "left_right", None),
        transition_time=getattr(args, "transition_time", 1),
        timeout=args.timeout,
    )


def cmd_discover(args: argparse.Namespace) -> int:
    print(f"[*] Searching for devices ({args.discover_timeout:.0f}s)...")
    devices = discover({"timeout": args.discover_timeout})
    if not devices:
        print("[*] No devices found")
        return 0
    for device in devices:
        print(
            f"  {device['host']}:{device['port']}  {device['model']}  "
            f"{device['name'] or '-'}  ({device['id']})"
        )
    return 0


def cmd_pair(args: argparse.Namespace) -> int:
    print(f"[*] Requesting token from {args.host}...")
    try:
        result = add_authorization({"host": args.host, "port": args.port, "timeout": args.timeout})
    except AuthPending as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
    print(f"[*] Token: {result['token']}")
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    config = build_config(args)
    properties = get_properties(
        {
            "host": config.host,
            "token": config.token,
            "port": config.port,
            "timeout": config.timeout,
            "filter": args.filter,
        }
    )
    print(json.dumps(properties, indent=2))
    return 0


def cmd_identify(args: argparse.Namespace) -> int:
    config = build_config(args)
    identify({"host": config.host, "token": config.token, "port": config.port})
    print(f"[*] Identify sent to {config.host}")
    return 0


def cmd_off(args: argparse.Namespace) -> int:
    device = NanoleafDevice(build_config(args))
    device.power_off()
    print(f"[*] {device.config.host} powered off")
    return 0


def stream_colors(
    device: NanoleafDevice,
    fps: float = 10.0,
    duration: float | None = None,
    loop: bool = False,
    image_path: str | None = None,
    color: RGB | None = None,
    verbose: bool = False,
) -> int:
    """Stream frames to an open device.

    Args:
        device: Open device
        fps: Target frame rate
        duration: Stop after this many seconds (None: one frame unless loop)
        loop: Keep sending until interrupted
        image_path: Optional image sampled at panel positions
        color: Optional solid colour for all panels
        verbose: Show per-frame details

    Returns:
        Exit code (0 for success)
    """
    topology = device.topology
    assert topology is not None, "Device is not open"
    count = topology.panel_led_count

    static_frame: list[RGB] | None = None
    if image_path:
        print(f"[*] Loading image: {image_path}")
        static_frame = sample_image_colors(image_path, topology.panels)
    elif color is not None:
        static_frame = [color] * count

    frame_interval = 1.0 / fps if fps > 0 else 0.0
    start = time.perf_counter()
    frames_sent = 0
    fps_history: list[float] = []

    while True:
        loop_start = time.perf_counter()
        frame = static_frame if static_frame is not None else generate_random_colors(count)

        try:
            sent = device.write(frame)
            frames_sent += 1
            if verbose:
                print(f"  [Frame #{frames_sent}] {sent} bytes")
        except WriteError as e:
            print(f"[!] Frame dropped: {e}")

        elapsed_total = time.perf_counter() - start
        if duration is not None:
            if elapsed_total >= duration:
                break
        elif not loop:
            break

        sleep_for = frame_interval - (time.perf_counter() - loop_start)
        if sleep_for > 0:
            time.sleep(sleep_for)

        loop_elapsed = time.perf_counter() - loop_start
        fps_history.append(1.0 / loop_elapsed if loop_elapsed > 0 else 0)
        if len(fps_history) > 10:
            fps_history.pop(0)
        if verbose and len(fps_history) > 1:
            print(f"  Average FPS (last {len(fps_history)}): {sum(fps_history) / len(fps_history):.2f}")

    print(f"[*] Frames sent: {frames_sent}")
    return 0


def cmd_stream(args: argparse.Namespace) -> int:
    color: RGB | None = None
    if args.color:
        try:
            color = parse_rgb_color(args.color)
        except ValueError as e:
            print(f"[!] Error: Invalid colour: {e}", file=sys.stderr)
            return 1

    device = NanoleafDevice(build_config(args))
    print(f"[*] Opening {device.config.host}...")
    device.open()
    try:
        topology = device.topology
        assert topology is not None
        print(
            f"[*] {topology.model} firmware {topology.firmware_version}: "
            f"{topology.panel_led_count} panels, streaming to {device.endpoint}"
        )
        print("=" * 80)
        return stream_colors(
            device,
            fps=args.fps,
            duration=args.duration,
            loop=args.loop,
            image_path=args.image,
            color=color,
            verbose=args.verbose,
        )
    except KeyboardInterrupt:
        print("\n[*] Interrupted by user")
        return 0
    finally:
        device.close()
        print("[*] Device restored and closed")


def _add_device_args(parser: argparse.ArgumentParser, token: bool = True) -> None:
    parser.add_argument(
        "--host",
        default=os.environ.get("NANOLEAF_HOST"),
        required="NANOLEAF_HOST" not in os.environ,
        help="Device hostname or IP (default: $NANOLEAF_HOST)",
    )
    if token:
        parser.add_argument(
            "--token",
            default=os.environ.get("NANOLEAF_TOKEN"),
            help="Access token (default: $NANOLEAF_TOKEN)",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Stream colours to Nanoleaf panel lights using external control mode",
        epilog="Run 'pair' while the device is in pairing mode to get a token. "
        "Use 'stream --image' to map an image onto the panels.",
    )
    parser.add_argument("--port", type=int, default=API_PORT, help=f"REST API port (default: {API_PORT})")
    parser.add_argument(
        "--timeout",
        type=float,
        default=2.0,
        help="Request timeout in seconds (default: 2.0)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show detailed info and debug logs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_discover = subparsers.add_parser("discover", help="Search the network for devices")
    p_discover.add_argument(
        "--discover-timeout",
        type=float,
        default=3.0,
        help="Seconds to wait for answers (default: 3)",
    )
    p_discover.set_defaults(func=cmd_discover)

    p_pair = subparsers.add_parser("pair", help="Request a new access token")
    _add_device_args(p_pair, token=False)
    p_pair.set_defaults(func=cmd_pair)

    p_info = subparsers.add_parser("info", help="Show device properties as JSON")
    _add_device_args(p_info)
    p_info.add_argument("--filter", default="", help="Resource path, e.g. panelLayout/layout")
    p_info.set_defaults(func=cmd_info)

    p_identify = subparsers.add_parser("identify", help="Flash the device briefly")
    _add_device_args(p_identify)
    p_identify.set_defaults(func=cmd_identify)

    p_off = subparsers.add_parser("off", help="Power the device off")
    _add_device_args(p_off)
    p_off.set_defaults(func=cmd_off)

    p_stream = subparsers.add_parser("stream", help="Stream colours to the panels")
    _add_device_args(p_stream)
    p_stream.add_argument("--image", type=str, help="Image sampled at panel positions")
    p_stream.add_argument("--color", type=str, help="Solid colour as r,g,b or #rrggbb")
    p_stream.add_argument("--fps", type=float, default=10.0, help="Frames per second (default: 10)")
    p_stream.add_argument("--duration", type=float, help="Stop after N seconds")
    p_stream.add_argument("--loop", action="store_true", help="Stream until interrupted")
    p_stream.add_argument(
        "--brightness",
        type=int,
        choices=range(0, 101),
        metavar="0-100",
        help="Set brightness while streaming",
    )
    p_stream.add_argument(
        "--top-down",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Order panels from the top row (default: device order)",
    )
    p_stream.add_argument(
        "--left-right",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Order panels from the left column (default: device order)",
    )
    p_stream.add_argument(
        "--transition-time",
        type=int,
        default=1,
        help="Panel fade time in multiples of 100ms (default: 1)",
    )
    p_stream.set_defaults(func=cmd_stream)

    return parser


def main() -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "stream" and args.image and args.color:
        print("[!] Error: --image and --color cannot be used together", file=sys.stderr)
        sys.exit(1)

    try:
        sys.exit(args.func(args))
    except NanoleafError as e:
        print(f"[!] Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"\n[!] FATAL ERROR: {e}", file=sys.stderr)
        import traceback

        traceback.print_exc()
        sys.exit(2)
