from django.urls import include, path

from . import views

app_name = 'rides'

urlpatterns = [
    path('estimate/', views.fare_estimate, name='fare-estimate'),

    # Passenger APIs
    path('request/', views.create_ride_request, name='create-ride'),

    # Listings
    path('history/', views.ride_history, name='ride-history'),
    path('active/', views.active_rides, name='active-rides'),
    path('scheduled/', views.scheduled_rides, name='scheduled-rides'),
    path('stats/', views.ride_stats, name='ride-stats'),

    # Safety
    path('sos/alert/', views.trigger_sos, name='sos-alert'),

    # Driver availability and idle location
    path('driver/', include('drivers.urls')),

    # Ride actions
    path('<int:ride_id>/', views.ride_detail, name='ride-detail'),
    path('<int:ride_id>/accept/', views.accept_ride, name='accept-ride'),
    path('<int:ride_id>/reject/', views.reject_ride_offer, name='reject-ride'),
    path('<int:ride_id>/start/', views.start_ride, name='start-ride'),
    path('<int:ride_id>/location/', views.update_ride_location, name='ride-location'),
    path('<int:ride_id>/complete/', views.complete_ride, name='complete-ride'),
    path('<int:ride_id>/cancel/', views.cancel_ride, name='cancel-ride'),
    path('<int:ride_id>/rate/', views.rate_ride, name='rate-ride'),
]
