"""Python client for a FrameLink endpoint.

Connects to a WebSocket server speaking the 5-byte-header frame format,
joins a channel, sends a greeting and prints incoming frames.  Frames
sent while the link is down are queued and flushed on reconnect.

    pip install framelink

    python examples/client_python.py --url ws://localhost:8765/link --channel 42
"""

import argparse
import asyncio
import logging
import signal

from framelink import HeartbeatConfig, ReconnectConfig, connect

CHAT = 1
JOIN = 2


async def main(url: str, channel: int) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    client = connect(
        url,
        reconnect=ReconnectConfig(base_delay=0.5, max_delay=10.0, max_retries=8),
        heartbeat=HeartbeatConfig(interval=15.0, idle_timeout=45.0),
    )

    @client.on(CHAT)
    def on_chat(frame):
        print(f"[chat #{frame.channel}] {frame.payload}")

    async with client:
        await client.send(JOIN, channel, {"channel": channel})
        await client.send(CHAT, channel, {"text": "hello"})
        print(f"Connecting to {url} (channel {channel}), Ctrl+C to stop\n")

        async def iterate():
            async for frame in client:
                print(f"[type {frame.type} #{frame.channel}] {frame.payload}")
            stop.set()

        reader = asyncio.create_task(iterate())
        await stop.wait()
        reader.cancel()

    print(client.get_stats())


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="FrameLink Python client")
    parser.add_argument("--url", default="ws://localhost:8765/link")
    parser.add_argument("--channel", type=int, default=1)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    asyncio.run(main(args.url, args.channel))
