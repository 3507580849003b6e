import argparse
import logging

from vaccibot.config import load_settings
from vaccibot.domain import DoctolibError
from vaccibot.locations import load_locations
from vaccibot.orchestrator import run_forever

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Vaccibot: books a COVID-19 vaccination on Doctolib")
    parser.add_argument("-u", dest="username", help="Doctolib username (email) [DOCTOLIB_USERNAME]")
    parser.add_argument("-p", dest="password", help="Doctolib password [DOCTOLIB_PASSWORD]")
    parser.add_argument(
        "-f",
        dest="centers_file",
        help="File containing the URLs of the desired vaccination centers, 1 URL per line [CENTERS_FILE]",
    )
    parser.add_argument(
        "-w", dest="workers", type=int, help="Number of workers checking for appointments concurrently [WORKERS]"
    )
    parser.add_argument(
        "-s", dest="sleep", type=int, help="Seconds between each appointment check for a single worker [SLEEP_SECONDS]"
    )
    parser.add_argument(
        "-t", dest="timeout", type=int, help="Seconds after which a request times out [REQUEST_TIMEOUT_SECONDS]"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    _setup_logging()

    overrides = {
        "DOCTOLIB_USERNAME": args.username,
        "DOCTOLIB_PASSWORD": args.password,
        "CENTERS_FILE": args.centers_file,
        "WORKERS": None if args.workers is None else str(args.workers),
        "SLEEP_SECONDS": None if args.sleep is None else str(args.sleep),
        "REQUEST_TIMEOUT_SECONDS": None if args.timeout is None else str(args.timeout),
    }

    try:
        settings = load_settings(overrides=overrides)
        locations = load_locations(settings.centers_file)
    except RuntimeError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    logger.info("Checking %d vaccination centers with %d workers", len(locations), settings.workers_count)

    try:
        booking = run_forever(settings, locations)
    except DoctolibError as e:
        # Login failed: nothing was started.
        logger.error("Startup failed (%s: %s)", type(e).__name__, e)
        return 1

    if booking is None:
        return 1
    logger.info("Appointment %s confirmed at %s (%s)", booking.appointment_id, booking.location, booking.start_date)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
