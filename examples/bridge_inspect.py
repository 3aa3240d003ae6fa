#!/usr/bin/env python3
"""List the USB inventory and show which devices count as video-capable."""

from __future__ import annotations

import argparse

from bridge_cli import add_common_arguments, configure_logging, ensure_repo_import

ensure_repo_import()
from capture_bridge import (  # type: ignore  # pylint: disable=wrong-import-position
    BridgeConfig,
    DeviceDiscovery,
    create_bridge,
    describe,
    matches_video_class,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect USB devices the bridge can see")
    add_common_arguments(parser)
    parser.add_argument("--strict", action="store_true", help="Only list devices with a video device class")
    args = parser.parse_args()

    configure_logging(args.log_level)

    discovery = DeviceDiscovery(vid=args.vid, pid=args.pid)
    devices = discovery.list_video_devices() if args.strict else discovery.list_devices()
    if not devices:
        print("No USB devices detected.")
    for index, descriptor in enumerate(devices):
        marker = "video" if matches_video_class(descriptor) else "     "
        print(f"[{index}] {marker} {describe(descriptor)}")

    config = BridgeConfig.from_env()
    config.vid, config.pid = args.vid, args.pid
    with create_bridge(config, discovery=discovery) as facade:
        print(f"initialize -> {facade.initialize()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
