from rest_framework import status as http
from rest_framework.response import Response


def ok(data, notifications=(), status=http.HTTP_200_OK) -> Response:
    """Success envelope shared by every endpoint."""
    return Response(
        {'ok': True, 'data': data, 'notifications': [n.as_dict() for n in notifications]},
        status=status,
    )
