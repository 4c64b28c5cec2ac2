import argparse
import asyncio
import json
import sys

from atlas import config


def _cmd_fetch(args) -> int:
    from atlas.ingest import fetch_and_normalize, flights_to_json

    flights = asyncio.run(fetch_and_normalize(count=args.count, base_url=args.upstream))
    if args.summary:
        if not flights:
            print("[fetch] no sources responded")
        for key, pts in flights.items():
            print(f"{key}: {len(pts)} points")
    else:
        json.dump(flights_to_json(flights), sys.stdout, indent=2 if args.pretty else None)
        print()
    return 0


def _cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run("atlas.app:app", host=args.host, port=args.port, log_level=config.LOG_LEVEL.lower())
    return 0


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="atlas", description="Live constellation feed → hour-by-hour playback")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the HTTP/WebSocket server")
    sp.add_argument("--host", default="0.0.0.0")
    sp.add_argument("--port", type=int, default=8000)
    sp.set_defaults(func=_cmd_serve)

    fp = sub.add_parser("fetch", help="Poll the upstream once and print the hour map")
    fp.add_argument("--upstream", default=None, help=f"Base URL (default {config.UPSTREAM_BASE_URL})")
    fp.add_argument("--count", type=int, default=None, help=f"Number of hourly sources (default {config.SOURCE_COUNT})")
    fp.add_argument("--summary", action="store_true", help="Print point counts per hour instead of JSON")
    fp.add_argument("--pretty", action="store_true", help="Indent JSON output")
    fp.set_defaults(func=_cmd_fetch)

    args = ap.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
