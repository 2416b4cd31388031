"""Enumerations shared by the ride models, services and serializers."""

STATUS_SCHEDULED = 'scheduled'
STATUS_PENDING = 'pending'
STATUS_ACCEPTED = 'accepted'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'

STATUS_CHOICES = [
    (STATUS_SCHEDULED, 'Scheduled'),
    (STATUS_PENDING, 'Pending'),
    (STATUS_ACCEPTED, 'Accepted'),
    (STATUS_IN_PROGRESS, 'In Progress'),
    (STATUS_COMPLETED, 'Completed'),
    (STATUS_CANCELLED, 'Cancelled'),
]

ACTIVE_STATUSES = (STATUS_ACCEPTED, STATUS_IN_PROGRESS)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)
DRIVER_ASSIGNED_STATUSES = (STATUS_ACCEPTED, STATUS_IN_PROGRESS, STATUS_COMPLETED)

RIDE_TYPE_ONE_TIME = 'one-time'
RIDE_TYPE_SUBSCRIPTION = 'subscription'
RIDE_TYPE_SCHEDULED = 'scheduled'

RIDE_TYPE_CHOICES = [
    (RIDE_TYPE_ONE_TIME, 'One-time'),
    (RIDE_TYPE_SUBSCRIPTION, 'Subscription'),
    (RIDE_TYPE_SCHEDULED, 'Scheduled'),
]

PRIORITY_SPEED = 'speed'
PRIORITY_RATING = 'rating'
PRIORITY_DISTANCE = 'distance'

PRIORITY_CHOICES = [
    (PRIORITY_SPEED, 'Speed'),
    (PRIORITY_RATING, 'Rating'),
    (PRIORITY_DISTANCE, 'Distance'),
]

PAYMENT_CASH = 'cash'
PAYMENT_EASYPAISA = 'easypaisa'
PAYMENT_JAZZCASH = 'jazzcash'
PAYMENT_CARD = 'card'

PAYMENT_METHOD_CHOICES = [
    (PAYMENT_CASH, 'Cash'),
    (PAYMENT_EASYPAISA, 'Easypaisa'),
    (PAYMENT_JAZZCASH, 'JazzCash'),
    (PAYMENT_CARD, 'Card'),
]

PAYMENT_PENDING = 'pending'
PAYMENT_COMPLETED = 'completed'
PAYMENT_FAILED = 'failed'
PAYMENT_REFUNDED = 'refunded'

PAYMENT_STATUS_CHOICES = [
    (PAYMENT_PENDING, 'Pending'),
    (PAYMENT_COMPLETED, 'Completed'),
    (PAYMENT_FAILED, 'Failed'),
    (PAYMENT_REFUNDED, 'Refunded'),
]

CANCELLED_BY_PASSENGER = 'passenger'
CANCELLED_BY_DRIVER = 'driver'
CANCELLED_BY_ADMIN = 'admin'

CANCELLED_BY_CHOICES = [
    (CANCELLED_BY_PASSENGER, 'Passenger'),
    (CANCELLED_BY_DRIVER, 'Driver'),
    (CANCELLED_BY_ADMIN, 'Admin'),
]

OFFER_PENDING = 'pending'
OFFER_ACCEPTED = 'accepted'
OFFER_REJECTED = 'rejected'
OFFER_EXPIRED = 'expired'

OFFER_STATUS_CHOICES = [
    (OFFER_PENDING, 'Pending'),
    (OFFER_ACCEPTED, 'Accepted'),
    (OFFER_REJECTED, 'Rejected'),
    (OFFER_EXPIRED, 'Expired'),
]

CURRENCY_PKR = 'PKR'
