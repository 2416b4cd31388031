"""Response envelope shared by every ride endpoint: {success, message, data?, errors?}."""

from rest_framework import status as http_status
from rest_framework.response import Response


def success_response(data=None, message: str = "Success", status: int = http_status.HTTP_200_OK) -> Response:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return Response(body, status=status)


def error_response(message: str, status: int = http_status.HTTP_400_BAD_REQUEST, errors=None) -> Response:
    body = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = errors
    return Response(body, status=status)
