from django.conf import settings
from django.core.paginator import Paginator
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

MAX_PAGE_SIZE = 200


def paginated_response(request, queryset, serialize, default_limit=None):
    """
    Paginate a queryset with the `page`/`limit` query parameters.

    serialize receives the objects of the current page and returns the
    list placed under `results`.
    """
    try:
        page = int(request.query_params.get('page', 1))
        limit = int(request.query_params.get('limit', default_limit or settings.DEFAULT_PAGE_SIZE))
    except ValueError:
        raise ValidationError({'page': 'page and limit must be integers'})
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    paginator = Paginator(queryset, limit)
    page_obj = paginator.get_page(page)

    return Response({
        'results': serialize(page_obj.object_list),
        'count': paginator.count,
        'next': page_obj.next_page_number() if page_obj.has_next() else None,
        'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
        'page': page_obj.number,
        'page_size': limit,
        'total_pages': paginator.num_pages,
    })
