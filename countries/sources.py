import logging
import numbers
from concurrent.futures import ThreadPoolExecutor

import requests
from django.conf import settings

from .exceptions import SourceUnavailable

logger = logging.getLogger(__name__)

COUNTRIES_SOURCE = "Countries API"
EXCHANGE_RATE_SOURCE = "Exchange Rate API"


def _get_json(url, source):
    """
    GET a JSON document from an external source.

    No retries: a timeout, a transport error, a non-2xx status or an
    undecodable body all raise SourceUnavailable straight away.
    """
    timeout = settings.EXTERNAL_TIMEOUT
    logger.info("Fetching data from %s", source)
    try:
        resp = requests.get(url, timeout=timeout, headers={"Accept": "application/json"})
        resp.raise_for_status()
    except requests.exceptions.Timeout as e:
        logger.error("%s timed out after %ss", source, timeout)
        raise SourceUnavailable(source, "timeout", str(e)) from e
    except requests.exceptions.HTTPError as e:
        logger.error("%s returned a non-success status: %s", source, e)
        raise SourceUnavailable(source, "http_error", str(e)) from e
    except requests.exceptions.RequestException as e:
        logger.error("Error fetching data from %s: %s", source, e)
        raise SourceUnavailable(source, "connection", str(e)) from e

    try:
        return resp.json()
    except ValueError as e:
        raise SourceUnavailable(source, "malformed", f"invalid JSON: {e}") from e


def fetch_countries():
    data = _get_json(settings.COUNTRIES_API_URL, COUNTRIES_SOURCE)
    if not isinstance(data, list):
        raise SourceUnavailable(COUNTRIES_SOURCE, "malformed", "expected a list of countries")
    return data


def fetch_exchange_rates():
    """Return the ``rates`` mapping of the exchange rate payload."""
    data = _get_json(settings.EXCHANGE_RATE_API_URL, EXCHANGE_RATE_SOURCE)
    rates = data.get("rates") if isinstance(data, dict) else None
    if not isinstance(rates, dict):
        raise SourceUnavailable(EXCHANGE_RATE_SOURCE, "malformed", "missing rates object")
    bad = [code for code, rate in rates.items() if isinstance(rate, bool) or not isinstance(rate, numbers.Real)]
    if bad:
        raise SourceUnavailable(EXCHANGE_RATE_SOURCE, "malformed", f"non-numeric rates for {', '.join(sorted(map(str, bad)))}")
    return rates


def fetch_sources():
    """
    Fetch countries and exchange rates concurrently.

    Both must succeed; the first failure (countries checked first) is raised.
    """
    with ThreadPoolExecutor(max_workers=2) as executor:
        countries_future = executor.submit(fetch_countries)
        rates_future = executor.submit(fetch_exchange_rates)
        countries = countries_future.result()
        rates = rates_future.result()
    logger.info("Fetched %d countries and %d exchange rates", len(countries), len(rates))
    return countries, rates
