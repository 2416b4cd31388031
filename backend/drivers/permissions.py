from rest_framework.permissions import BasePermission


class IsDriver(BasePermission):
    """
    Allows access only to users with role == 'driver'.
    Profile existence and approval are checked by the driver services.
    """
    message = "Only drivers can perform this action"

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "is_driver", False)
