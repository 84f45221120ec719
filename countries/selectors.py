from django.db.models import F

from .exceptions import CountryNotFound
from .models import Country, RefreshStatus

# highest estimated_gdp first, ties broken alphabetically
RANKING_ORDER = (F("estimated_gdp").desc(nulls_last=True), "name")

SORT_OPTIONS = {
    "gdp_desc": RANKING_ORDER,
    "gdp_asc": (F("estimated_gdp").asc(nulls_last=True), "name"),
    "name_asc": ("name",),
    "name_desc": ("-name",),
    "population_desc": ("-population", "name"),
    "population_asc": ("population", "name"),
}


def get_status():
    return RefreshStatus.load()


def top_countries(limit=5):
    return list(Country.objects.order_by(*RANKING_ORDER)[:limit])


def get_country(name):
    try:
        return Country.objects.get(name_key=Country.key_for(name))
    except Country.DoesNotExist:
        raise CountryNotFound(name)


def list_countries(region=None, currency=None, sort=None):
    """
    Filter and sort the cached countries.

    ``region`` and ``currency`` match case-insensitively. ``sort`` must be
    one of SORT_OPTIONS; anything else raises ValueError.
    """
    queryset = Country.objects.all()
    if region:
        queryset = queryset.filter(region__iexact=region)
    if currency:
        queryset = queryset.filter(currency_code__iexact=currency)
    if sort:
        if sort not in SORT_OPTIONS:
            raise ValueError(f"Unsupported sort {sort!r}; expected one of {', '.join(SORT_OPTIONS)}")
        queryset = queryset.order_by(*SORT_OPTIONS[sort])
    return queryset
