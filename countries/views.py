import logging

from django.http import FileResponse
from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.response import Response

from . import persistence, selectors, services
from .exceptions import CountryNotFound, RefreshInProgress, SourceUnavailable, StorageFailure
from .imaging import ensure_summary_image
from .serializers import CountrySerializer, RefreshStatusSerializer

logger = logging.getLogger(__name__)


def _error(message, details=None, code=status.HTTP_500_INTERNAL_SERVER_ERROR):
    body = {"error": message}
    if details is not None:
        body["details"] = details
    return Response(body, status=code)


# ----------------------------
# POST /countries/refresh
# ----------------------------
@api_view(['POST'])
def refresh_countries(request):
    """
    Refresh the country cache from the external APIs.
    Existing countries are updated in place, new ones inserted.
    """
    try:
        result = services.refresh_countries()
    except SourceUnavailable as e:
        return _error("External data source unavailable", f"Could not fetch data from {e.source}",
                      status.HTTP_503_SERVICE_UNAVAILABLE)
    except RefreshInProgress as e:
        return _error("Refresh already in progress", str(e), status.HTTP_409_CONFLICT)
    except StorageFailure as e:
        return _error("Internal server error", str(e))
    except Exception as e:
        logger.exception("Refresh failed")
        return _error("Internal server error", str(e))

    return Response({
        "message": "Countries refreshed successfully",
        "total_countries": result.total_records,
        "last_refreshed_at": result.timestamp,
    }, status=status.HTTP_200_OK)


# ----------------------------
# GET /countries
# ----------------------------
@api_view(['GET'])
def list_countries(request):
    """
    List countries, with optional filters, sorting and paging.
    Supports:
        - ?region=Africa
        - ?currency=NGN
        - ?sort=gdp_desc (see selectors.SORT_OPTIONS)
        - ?limit=10&offset=20
    """
    try:
        queryset = selectors.list_countries(
            region=request.query_params.get('region'),
            currency=request.query_params.get('currency'),
            sort=request.query_params.get('sort'),
        )
    except ValueError as e:
        return _error("Validation failed", str(e), status.HTTP_400_BAD_REQUEST)

    paginator = LimitOffsetPagination()
    page = paginator.paginate_queryset(queryset, request)
    if page is not None:
        return paginator.get_paginated_response(CountrySerializer(page, many=True).data)
    return Response(CountrySerializer(queryset, many=True).data)


# ----------------------------
# GET /countries/:name
# DELETE /countries/:name
# ----------------------------
@api_view(['GET', 'DELETE'])
def country_detail(request, name):
    """
    Handle GET and DELETE for a single country by name (case-insensitive).
    """
    try:
        if request.method == 'GET':
            return Response(CountrySerializer(selectors.get_country(name)).data)

        deleted = persistence.delete_country(name)
        return Response({
            "message": "Country deleted successfully",
            "deleted_count": deleted,
        })
    except CountryNotFound:
        return _error("Country not found", code=status.HTTP_404_NOT_FOUND)
    except StorageFailure as e:
        return _error("Internal server error", str(e))


# ----------------------------
# GET /status
# ----------------------------
@api_view(['GET'])
def status_view(request):
    """
    Return the cached country total and the last refresh time.
    """
    return Response(RefreshStatusSerializer(selectors.get_status()).data)


# ----------------------------
# GET /countries/image
# ----------------------------
@api_view(['GET'])
def get_summary_image(request):
    """
    Return the summary PNG, drawing an empty placeholder if no refresh has run yet.
    """
    try:
        path = ensure_summary_image()
        return FileResponse(open(path, 'rb'), content_type='image/png')
    except OSError as e:
        logger.exception("Could not serve summary image")
        return _error("Failed to retrieve image", str(e))
