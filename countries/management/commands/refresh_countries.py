from django.core.management.base import BaseCommand, CommandError

from countries.exceptions import CountryCacheError
from countries.services import refresh_countries


class Command(BaseCommand):
    help = "Refresh the cached countries from the external APIs and redraw the summary image."

    def handle(self, *args, **options):
        try:
            result = refresh_countries()
        except CountryCacheError as e:
            raise CommandError(str(e)) from e

        self.stdout.write(self.style.SUCCESS(
            f"Refreshed {result.total_records} countries at {result.timestamp.isoformat()}"
        ))
