"""Publish one message to an MHU hub.

    python examples/publish.py --address hub.local:9000 --topic orders created.42

Uses the blocking client, so it also works from scripts without an
event loop.
"""

import argparse
import sys

from mhu_client import HubError, SyncHubClient, TLSConfig


def main() -> int:
    parser = argparse.ArgumentParser(description="MHU publisher")
    parser.add_argument("payload", help='Legacy frames expect "action.object_id"')
    parser.add_argument("--address", default="localhost:9000")
    parser.add_argument("--topic", required=True)
    parser.add_argument("--subscriber-id", default=None)
    parser.add_argument("--cert", default="client.pem")
    parser.add_argument("--key", default="client.key")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    client = SyncHubClient(
        args.address,
        subscriber_id=args.subscriber_id,
        tls=TLSConfig(certfile=args.cert, keyfile=args.key),
        debug=args.debug,
    )
    try:
        client.start()
        message = client.publish(args.topic, args.payload)
    except HubError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        client.close()

    print(f"Published {message.topic}: {message.payload}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
