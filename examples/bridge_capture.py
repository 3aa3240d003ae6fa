#!/usr/bin/env python3
"""Drive a full initialize/capture/dispose round trip through the bridge.

The capture source is an image file read on a worker thread, which stands in
for the platform camera activity.  With ``--hotplug`` the script also prints
USB attach/detach events until interrupted.
"""

from __future__ import annotations

import argparse
import pathlib
import queue

from bridge_cli import add_common_arguments, configure_logging, ensure_repo_import

ensure_repo_import()
from capture_bridge import (  # type: ignore  # pylint: disable=wrong-import-position
    BridgeConfig,
    FutureMethodResult,
    QueueEventSink,
    ThreadedLauncher,
    base64_to_bytes,
    bytes_to_base64,
    create_bridge,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Capture an image through the bridge")
    add_common_arguments(parser)
    parser.add_argument("image", type=pathlib.Path, nargs="?", help="Image file returned by the fake camera")
    parser.add_argument("--output", type=pathlib.Path, default=pathlib.Path("capture.jpg"))
    parser.add_argument("--timeout", type=float, default=10.0, help="Seconds to wait for the capture")
    parser.add_argument("--hotplug", action="store_true", help="Print USB hotplug events after capturing")
    args = parser.parse_args()

    log = configure_logging(args.log_level, name="bridge_capture")

    def grab():
        if args.image is None:
            return None
        return args.image.read_bytes()

    config = BridgeConfig.from_env()
    config.vid, config.pid = args.vid, args.pid
    config.capture_timeout_s = args.timeout
    config.hotplug = args.hotplug

    with create_bridge(config, launcher=ThreadedLauncher(grab)) as facade:
        result = FutureMethodResult()
        facade.handle_call("initialize", None, result)
        print(f"initialize -> {result.reply().value}")

        result = FutureMethodResult()
        facade.handle_call("capture", None, result)
        reply = result.reply(args.timeout + 1.0)
        if not reply.ok:
            print(f"capture failed: {reply.code}: {reply.message}")
            return 1

        # The runtime codec would carry the bytes as-is; mimic a base64 hop.
        data = base64_to_bytes(bytes_to_base64(reply.value["imageBytes"]))
        args.output.write_bytes(data)
        print(f"Saved {len(data)} bytes to {args.output}")

        if args.hotplug:
            sink = QueueEventSink()
            facade.on_listen(config.hotplug_key, sink)
            print("Waiting for USB hotplug events (Ctrl+C to stop)...")
            try:
                while True:
                    try:
                        event = sink.get(timeout=0.5)
                    except queue.Empty:
                        continue
                    if event is None:
                        break
                    print(event)
            except KeyboardInterrupt:
                log.info("Interrupted")
            finally:
                facade.on_cancel(config.hotplug_key)

        result = FutureMethodResult()
        facade.handle_call("dispose", None, result)
        print(f"dispose -> ok={result.reply().ok}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
