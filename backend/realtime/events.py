"""Wire names of every realtime event the dispatch core emits."""

# Driver-directed
RIDE_NEW_REQUEST = "ride:new_request"
RIDE_CANCELLED_UNASSIGNED = "ride:cancelled_unassigned"
RIDE_OFFER_CLOSED = "ride:offer_closed"

# Passenger-directed
RIDE_ACCEPTED = "ride:accepted"
RIDE_STARTED = "ride:started"
RIDE_DRIVER_LOCATION = "ride:driver_location"
RIDE_COMPLETED = "ride:completed"
RIDE_CANCELLED = "ride:cancelled"
RIDE_SCHEDULED_ACTIVATED = "ride:scheduled_activated"
RIDE_NO_DRIVERS = "ride:no_drivers"

# Either participant
RIDE_RATED = "ride:rated"
CHAT_RECEIVE = "chat:receive"
CHAT_TYPING = "chat:typing"

# Admin-directed
SOS_ALERT = "sos:alert"
