from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from sigrelay.core.config import RelayConfig, load_config
from sigrelay.server.runtime import RelayServer

log = logging.getLogger("sigrelay.cmd.server")


async def _run(config: RelayConfig) -> None:
    server = RelayServer(config)
    await server.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info("Server running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await server.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="WebRTC rendezvous signaling server")
    parser.add_argument("--config", type=Path, help="Path to server YAML config")
    parser.add_argument("--host", help="Listen address (default 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Listen port (default $PORT or 8080)")
    parser.add_argument("--log-level", help="Logging level, e.g. DEBUG or INFO")
    args = parser.parse_args(argv)

    config = load_config(args.config, host=args.host, port=args.port, log_level=args.log_level)

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
