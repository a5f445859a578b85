"""Return failed webhook events to the pending queue.

The event ids and signed payloads are unchanged, so receivers that dedupe
on `id` still see each event at most once.
"""

import argparse

from sqlalchemy import func, select

from sandpay.common.config import settings
from sandpay.common.db import create_session_factory
from sandpay.services.webhooks.models import WebhookEvent
from sandpay.services.webhooks.service import FAILED, WebhookSender


def replay(database_url: str, event_ids: list[str], dry_run: bool) -> int:
    """Requeue matching failed events (or count them on a dry run)."""

    factory = create_session_factory(database_url)
    if dry_run:
        stmt = select(func.count()).select_from(WebhookEvent).where(WebhookEvent.delivery_status == FAILED)
        if event_ids:
            stmt = stmt.where(WebhookEvent.id.in_(event_ids))
        with factory() as db:
            count = db.execute(stmt).scalar_one()
        print(f"failed_events={count}")
        print("Dry run only; nothing requeued.")
        return 0

    sender = WebhookSender(factory, service_name="replay")
    requeued = sender.replay_failed(event_ids or None)
    print(f"requeued={requeued}")
    return 0 if requeued or not event_ids else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Requeue failed webhook deliveries.")
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument("--event-id", action="append", default=[], help="repeatable; omit to requeue all failed")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    raise SystemExit(replay(args.database_url, args.event_id, args.dry_run))


if __name__ == "__main__":
    main()
