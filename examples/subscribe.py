"""Subscribe to an MHU hub and print incoming messages.

    pip install mhu-client

    # Client certificate in ./client.pem and ./client.key
    python examples/subscribe.py --address hub.local:9000 --topics orders,invoices

    # Explicit certificate files, verify the hub against a CA bundle
    python examples/subscribe.py --address hub.local:9000 \
        --cert certs/client.pem --key certs/client.key --ca certs/ca.pem
"""

import argparse
import asyncio
import signal

from mhu_client import TLSConfig, connect


async def main(args: argparse.Namespace, topics: list[str]):
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    tls = TLSConfig(
        certfile=args.cert, keyfile=args.key, cafile=args.ca, verify=args.ca is not None
    )

    async with connect(
        args.address,
        subscriber_id=args.subscriber_id,
        topics=topics,
        tls=tls,
        debug=args.debug,
    ) as client:

        @client.on_state_change
        def state_changed(state):
            print(f"-- {state.value}")

        @client.on_any
        async def show(message):
            if not topics or message.topic in topics:
                print(f"[{message.topic}] {message.subscriber_id}: {message.payload}")

        print(f"Subscriber {client.subscriber_id} -> {client.address}")
        print("Listening for messages... (Ctrl+C to stop)\n")
        await stop.wait()

        print(client.get_stats())


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="MHU subscriber")
    parser.add_argument("--address", default="localhost:9000")
    parser.add_argument("--subscriber-id", default=None, help="Defaults to a random UUID")
    parser.add_argument(
        "--topics",
        default="",
        help="Comma-separated topics to print (default: everything)",
    )
    parser.add_argument("--cert", default="client.pem")
    parser.add_argument("--key", default="client.key")
    parser.add_argument("--ca", default=None, help="CA bundle; enables hub verification")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    topics = [t.strip() for t in args.topics.split(",") if t.strip()]
    asyncio.run(main(args, topics))
