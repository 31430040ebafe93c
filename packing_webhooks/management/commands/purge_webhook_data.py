"""
Purge webhook orders and standalone assortments past the retention window.

Usage:
    python manage.py purge_webhook_data

    # Keep only the last week
    python manage.py purge_webhook_data --older-than-days 7

    # Hand the work to the Dramatiq workers instead of running inline
    python manage.py purge_webhook_data --async
"""

import logging

from django.core.management.base import BaseCommand

from packing_webhooks.tasks import purge_old_webhooks, purge_stale_assortments

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Purge old webhook orders and rarely used individual assortments"

    def add_arguments(self, parser):
        parser.add_argument(
            "--older-than-days",
            type=int,
            default=None,
            help="Retention window in days (default: PACKING_RETENTION_DAYS).",
        )
        parser.add_argument(
            "--async",
            action="store_true",
            dest="run_async",
            help="Enqueue the purge actors instead of running them inline.",
        )
        parser.add_argument(
            "--skip-assortments",
            action="store_true",
            help="Only purge sales-order webhook records.",
        )

    def handle(self, *args, **options):
        days = options["older_than_days"]
        if days is not None and days < 1:
            self.stderr.write("ERROR: --older-than-days must be at least 1.")
            return

        actors = [purge_old_webhooks]
        if not options["skip_assortments"]:
            actors.append(purge_stale_assortments)

        for actor in actors:
            if options["run_async"]:
                actor.send(days)
                self.stdout.write(f"  QUEUED: {actor.actor_name}")
                continue

            # Calling the actor directly runs it synchronously.
            deleted = actor(days)
            self.stdout.write(f"  DONE: {actor.actor_name} deleted {deleted} records")

        logger.info(
            "purge_webhook_data finished (older_than_days=%s, async=%s)",
            days,
            options["run_async"],
        )
