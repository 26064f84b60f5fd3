"""CLI job that runs one streaming invocation and prints its events."""

import argparse
import logging
import sys
import threading
from typing import Optional, Sequence

from gapfinder.core import events as stream_events
from gapfinder.core.config import get_settings
from gapfinder.core.extraction import resolve_request
from gapfinder.core.stream import InvalidRequestError, StreamOrchestrator
from gapfinder.models import GeoPoint

logger = logging.getLogger(__name__)


def run_query_job(
    *,
    prompt: str,
    radius_km: Optional[float],
    cursor: Optional[int],
    center: Optional[GeoPoint] = None,
    out=None,
) -> int:
    """Run one invocation, writing SSE-encoded events to `out`. Returns the found count."""
    out = out or sys.stdout
    settings = get_settings()
    stream_request = resolve_request(prompt, settings, radius_km=radius_km, cursor=cursor, center=center)
    orchestrator = StreamOrchestrator.from_settings(settings)
    plan = orchestrator.plan(stream_request)

    found = 0
    cancel_event = threading.Event()
    events = orchestrator.stream(plan, cancel_event)
    try:
        for event in events:
            out.write(event.encode())
            out.flush()
            if event.name == stream_events.BUSINESS:
                found += 1
    except KeyboardInterrupt:
        logger.info("Interrupted; cancelling the stream")
        cancel_event.set()
    finally:
        events.close()

    logger.info("Completed run: businesses_without_website=%d", found)
    return found


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Find businesses without a website")
    parser.add_argument("--prompt", required=True, help='Free text, e.g. "cafes in Portland, Oregon"')
    parser.add_argument("--radius", dest="radius_km", type=float, help="Search radius in km")
    parser.add_argument("--cursor", type=int, help="Tile index to resume from")
    parser.add_argument("--lat", type=float, help="Search center latitude (skips geocoding)")
    parser.add_argument("--lng", type=float, help="Search center longitude (skips geocoding)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    center = None
    if args.lat is not None or args.lng is not None:
        if args.lat is None or args.lng is None:
            parser.error("--lat and --lng must be given together")
        center = GeoPoint(args.lat, args.lng)

    try:
        run_query_job(prompt=args.prompt, radius_km=args.radius_km, cursor=args.cursor, center=center)
    except InvalidRequestError as exc:
        logger.error("Invalid request: %s", exc)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
