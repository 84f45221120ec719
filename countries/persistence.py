import logging
from dataclasses import dataclass, field

from django.db import DatabaseError, transaction

from .exceptions import CountryNotFound, StorageFailure
from .models import Country, RefreshStatus
from .selectors import top_countries

logger = logging.getLogger(__name__)

TOP_N = 5


@dataclass(frozen=True)
class UpsertResult:
    total: int
    top_countries: list = field(default_factory=list)


def _write_status(total, refreshed_at=None):
    """
    Overwrite the singleton status row; must run inside a transaction.

    Leaving ``refreshed_at`` as None keeps the stored refresh time, which is
    what a deletion wants.
    """
    status, _ = RefreshStatus.objects.select_for_update().get_or_create(pk=RefreshStatus.SINGLETON_ID)
    status.total_countries = total
    if refreshed_at is not None:
        status.last_refreshed_at = refreshed_at
    status.version += 1
    status.save()
    return status


def upsert_countries(records, refreshed_at):
    """
    Insert new countries and overwrite existing ones in one transaction.

    Rows are matched on the lowercased name, so "France" and "france" are
    the same country. Returns the new row count and the top countries by
    estimated GDP as seen inside the transaction.
    """
    keyed = {Country.key_for(record["name"]): record for record in records}
    try:
        with transaction.atomic():
            existing = set(
                Country.objects.filter(name_key__in=list(keyed)).values_list("name_key", flat=True)
            )
            new_rows = [Country(name_key=key, **record) for key, record in keyed.items() if key not in existing]
            if new_rows:
                Country.objects.bulk_create(new_rows)

            for key in existing:
                Country.objects.filter(name_key=key).update(**keyed[key])

            total = Country.objects.count()
            top = top_countries(TOP_N)
            _write_status(total, refreshed_at)
    except DatabaseError as e:
        logger.exception("Country upsert rolled back")
        raise StorageFailure(f"Could not store refreshed countries: {e}") from e

    logger.info("Upserted countries: %d inserted, %d updated, %d total", len(new_rows), len(existing), total)
    return UpsertResult(total=total, top_countries=top)


def delete_country(name):
    """
    Delete one country by case-insensitive name and recount.

    Raises CountryNotFound, leaving the status row untouched, when nothing
    matches. The stored refresh time is kept since a deletion is not a refresh.
    """
    try:
        with transaction.atomic():
            deleted, _ = Country.objects.filter(name_key=Country.key_for(name)).delete()
            if not deleted:
                raise CountryNotFound(name)
            _write_status(Country.objects.count())
    except DatabaseError as e:
        logger.exception("Deleting %r rolled back", name)
        raise StorageFailure(f"Could not delete country {name!r}: {e}") from e

    logger.info("Deleted country %r", name)
    return deleted
