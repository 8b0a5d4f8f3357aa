"""List events the tracker could not apply, for manual remediation."""

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv


# Ensure the repository root (which contains the ``tracker`` package) is on PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tracker.config import get_settings
from tracker.db import make_session
from tracker.store import FailedEventStore


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--stream", help="only this stream (e.g. LpManager_EndMinting)")
    args = parser.parse_args(argv)

    load_dotenv()
    Session = make_session(get_settings().database_url)
    failed = [
        row for row in FailedEventStore(Session).unresolved()
        if args.stream is None or row.stream_id == args.stream
    ]
    if not failed:
        print("✅ Aucun événement en échec.")
        return

    for row in failed:
        print(
            f"{row.stream_id:<24} {row.event_id:<20} {row.error_kind:<20} "
            f"attempts={row.attempts} last={row.last_attempt_at:%Y-%m-%d %H:%M:%S}"
        )
        print(f"    {row.detail}")
        print(f"    {json.dumps(row.payload, sort_keys=True)}")
    print(f"⚠️  {len(failed)} événement(s) à traiter manuellement.")


if __name__ == "__main__":
    main()
