# alertpoller/main.py
from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv

# Load /<repo>/.env (main.py is /<repo>/alertpoller/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from alertpoller.core.alerts_db import create_alert_store
from alertpoller.core.settings import settings
from alertpoller.services.poller import AlertPoller

logger = logging.getLogger(__name__)


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="alertpoller", description="Poll official hazard alert feeds into the alert store.")
    p.add_argument("--once", action="store_true", help="run a single poll cycle and exit")
    p.add_argument(
        "--interval",
        type=float,
        default=300.0,
        help="seconds between cycles when looping (default: 300)",
    )
    return p.parse_args(argv)


async def _run(poller: AlertPoller, *, once: bool, interval: float) -> None:
    while True:
        try:
            report = await poller.poll()
        except Exception:
            logger.exception("[poller] cycle failed")
        else:
            if report.sweep_error:
                logger.warning("[poller] sweep error=%s", report.sweep_error)
            for fr in report.feeds:
                if fr.error:
                    logger.warning("[poller] feed=%s error=%s", fr.feed, fr.error)
        if once:
            return
        await asyncio.sleep(max(1.0, interval))


def main(argv=None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    store = create_alert_store(
        database_url=settings.alerts_database_url,
        sqlite_path=settings.alerts_db_path if not settings.alerts_database_url else None,
    )
    poller = AlertPoller(store, settings=settings)
    try:
        asyncio.run(_run(poller, once=args.once, interval=args.interval))
    except KeyboardInterrupt:
        logger.info("[poller] interrupted, shutting down")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
