import logging
import random

from .exceptions import ValidationSkip
from .models import NO_CURRENCY, Country

logger = logging.getLogger(__name__)

MULTIPLIER_MIN = 1000
MULTIPLIER_MAX = 2000


def _population(raw):
    population = raw.get("population")
    if population is None or isinstance(population, bool):
        raise ValidationSkip(f"missing population for {raw.get('name')!r}")
    if isinstance(population, float) and population.is_integer():
        population = int(population)
    if not isinstance(population, int) or population < 0:
        raise ValidationSkip(f"invalid population {population!r} for {raw.get('name')!r}")
    return population


def _currency_code(raw):
    currencies = raw.get("currencies") or []
    first = currencies[0] if currencies else None
    code = first.get("code") if isinstance(first, dict) else None
    if not code or not str(code).strip():
        return NO_CURRENCY
    return str(code).strip().upper()


def normalize_country(raw, rates, refreshed_at, multipliers):
    """
    Turn one raw country descriptor into a row ready for storage.

    ``multipliers`` only needs a ``randint(a, b)`` method; pass a seeded or
    fixed source to make estimated_gdp reproducible.

    A currency missing from ``rates`` leaves both exchange_rate and
    estimated_gdp as None. No currency at all stores the NO_CURRENCY code
    with an estimated_gdp of 0.
    """
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationSkip(f"missing name in descriptor {raw!r}")
    population = _population(raw)

    currency_code = _currency_code(raw)
    exchange_rate = None
    estimated_gdp = None
    if currency_code == NO_CURRENCY:
        estimated_gdp = 0
    else:
        exchange_rate = rates.get(currency_code)
        if exchange_rate is not None and exchange_rate > 0 and population > 0:
            multiplier = multipliers.randint(MULTIPLIER_MIN, MULTIPLIER_MAX)
            estimated_gdp = population * multiplier / exchange_rate

    return {
        "name": name.strip(),
        "capital": raw.get("capital") or None,
        "region": raw.get("region") or None,
        "population": population,
        "currency_code": currency_code,
        "exchange_rate": exchange_rate,
        "estimated_gdp": estimated_gdp,
        "flag_url": raw.get("flag") or None,
        "last_refreshed_at": refreshed_at,
    }


def reconcile_countries(raw_countries, rates, refreshed_at, multipliers=None):
    """
    Normalize a whole batch.

    Unusable descriptors are logged and dropped. Names that collide
    case-insensitively collapse into one record: the later descriptor's
    values win, the earlier one's position is kept.
    """
    if multipliers is None:
        multipliers = random.SystemRandom()

    records = {}
    skipped = 0
    for raw in raw_countries:
        if not isinstance(raw, dict):
            skipped += 1
            logger.warning("Skipping non-object country descriptor: %r", raw)
            continue
        try:
            record = normalize_country(raw, rates, refreshed_at, multipliers)
        except ValidationSkip as e:
            skipped += 1
            logger.warning("Skipping country: %s", e)
            continue
        records[Country.key_for(record["name"])] = record

    logger.info("Reconciled %d countries, skipped %d", len(records), skipped)
    return list(records.values())
