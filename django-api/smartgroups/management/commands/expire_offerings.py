"""Run periodically (e.g. every minute from cron): expire groups past their deadline."""

from django.core.management.base import BaseCommand

from smartgroups.services import get_engine, set_engine


class Command(BaseCommand):
    help = "Expire open smart groups whose expires_at has passed and notify subscribers."

    def handle(self, *args, **options):
        engine = get_engine()
        expired = engine.coordinator.expire_due()
        for offering_id in expired:
            self.stdout.write(f"expired {offering_id}")
        # Deliver the staged status changes before the process exits.
        engine.close()
        set_engine(None)
        self.stdout.write(self.style.SUCCESS(f"Expired {len(expired)} offerings"))
