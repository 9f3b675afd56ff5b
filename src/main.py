"""Command-line driver: moves an observer in a straight line and logs tile events."""

import argparse
import asyncio
import logging
import math
import sys
from pathlib import Path

from domain.models import MercatorPosition, TileAdded, TileRemoved
from geo.tiles import latlng_to_mercator
from infrastructure.http.client import make_http_session
from profiles import DEFAULT_PROFILE, default_profile, load_profile
from services.tile_service import TileService

logger = logging.getLogger(__name__)


def setup_logging(level: str, log_dir: Path) -> Path:
    """Log to stdout and to ``<log_dir>/tilering.log``."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'tilering.log'
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Keep elevation and map-context tiles loaded around a moving observer'
    )
    parser.add_argument(
        '--profile',
        default=DEFAULT_PROFILE,
        help='Profile name from configs/ or a path to a TOML file',
    )
    parser.add_argument('--lat', type=float, help='Start latitude (degrees)')
    parser.add_argument('--lon', type=float, help='Start longitude (degrees)')
    parser.add_argument(
        '--heading',
        type=float,
        default=90.0,
        help='Direction of travel, degrees clockwise from north',
    )
    parser.add_argument('--speed', type=float, default=50.0, help='Speed in m/s')
    parser.add_argument('--duration', type=float, default=60.0, help='Run time in seconds')
    parser.add_argument('--tick', type=float, default=0.5, help='Position update period (s)')
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
    )
    parser.add_argument('--log-dir', type=Path, default=Path('log'))
    return parser


def step(position: MercatorPosition, heading_deg: float, distance_m: float) -> MercatorPosition:
    """Advance ``distance_m`` along a compass heading in Mercator space."""
    heading = math.radians(heading_deg)
    return MercatorPosition(
        x=position.x + distance_m * math.sin(heading),
        y=position.y + distance_m * math.cos(heading),
    )


def log_tile_event(event) -> None:
    if isinstance(event, TileAdded):
        logger.info('+ %s', event.key)
    elif isinstance(event, TileRemoved):
        logger.info('- %s', event.key)


async def run(args: argparse.Namespace) -> int:
    try:
        settings = load_profile(args.profile)
    except FileNotFoundError:
        if args.profile != DEFAULT_PROFILE:
            raise
        logger.warning('Default profile missing, using built-in defaults')
        settings = default_profile()

    lat = args.lat if args.lat is not None else settings.observer.latitude
    lon = args.lon if args.lon is not None else settings.observer.longitude
    position = MercatorPosition(*latlng_to_mercator(lat, lon))

    async with make_http_session() as session:
        service = TileService(settings, session)
        service.subscribe(log_tile_event)
        try:
            await service.start(position)
            elapsed = 0.0
            while elapsed < args.duration:
                await asyncio.sleep(args.tick)
                elapsed += args.tick
                position = step(position, args.heading, args.speed * args.tick)
                service.feed.publish(position)
            logger.info(
                'Finished: %d elevation and %d context tiles held, stats %s',
                len(service.elevation.tiles),
                len(service.context.tiles),
                service.stats(),
            )
        finally:
            service.dispose()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log_file = setup_logging(args.log_level, args.log_dir)
    logger.info('Starting tile ring driver, logging to %s', log_file)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info('Interrupted')
        return 130
    except FileNotFoundError as e:
        logger.error('%s', e)
        return 2


if __name__ == '__main__':
    sys.exit(main())
