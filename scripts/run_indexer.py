"""Run the LP minting / NFT transfer ingestion loop."""

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv


# Ensure the repository root (which contains the ``tracker`` package) is on PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tracker.checkpoints import CheckpointStore
from tracker.config import get_settings
from tracker.db import make_session
from tracker.errors import ConfigError
from tracker.scheduler import IngestionScheduler, bootstrap_checkpoints, build_cycle
from tracker.utils import configure_logging


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--once", action="store_true", help="run a single cycle and exit")
    args = parser.parse_args(argv)

    load_dotenv()
    settings = get_settings()
    configure_logging(settings.log_level)

    Session = make_session(settings.database_url)
    bootstrap_checkpoints(CheckpointStore(Session))
    try:
        cycle = build_cycle(settings, Session)
    except ConfigError as exc:
        raise SystemExit(f"⚠️  {exc} (.env)") from exc

    scheduler = IngestionScheduler(cycle, interval_seconds=settings.poll_interval_seconds)
    if args.once:
        report = scheduler.tick()
        if report is None or report.aborted:
            raise SystemExit(1)
        print(
            "✅ Cycle terminé. "
            + ", ".join(f"{n} {s.value}" for s, n in report.fetched.items())
        )
        return
    scheduler.start()


if __name__ == "__main__":
    main()
