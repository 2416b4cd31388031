import threading
from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import connection
from django.test import TestCase, TransactionTestCase

from accounts.models import User
from common.testing import (
	DROPOFF,
	FAR_AWAY,
	PICKUP,
	FailingRouter,
	FakeClock,
	FakeGeocoder,
	build_test_orchestrator,
	make_driver,
	make_passenger,
	ride_request_data,
)
from drivers.models import DriverProfile
from integrations import haversine_route
from passengers.models import PassengerProfile
from realtime import events
from realtime.geo import STATE_AVAILABLE, STATE_BUSY, STATE_OFFLINE
from rides.constants import (
	OFFER_EXPIRED, OFFER_REJECTED,
	STATUS_ACCEPTED, STATUS_CANCELLED, STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_PENDING, STATUS_SCHEDULED,
)
from rides.models import Ride, RideLocationPoint, RideOffer
from . import (
	ActiveRideExistsError,
	CancellationNotAllowedError,
	DriverNotApprovedError,
	DriverNotAvailableError,
	DriverTooFarError,
	InvalidRideRequestError,
	InvalidTransition,
	NotRideParticipantError,
	OfferExpiredError,
	OfferNotFoundError,
	RideNotFoundError,
	ScheduledRideActivator,
)
from .state_machine import RideStateMachine, can_transition

KARACHI = ZoneInfo('Asia/Karachi')


def driver_photo():
	return SimpleUploadedFile('driver.jpg', b'\xff\xd8\xff\xe0 fake jpeg', content_type='image/jpeg')


class DispatchTestCase(TestCase):
	start = datetime(2026, 10, 19, 12, 0, tzinfo=KARACHI)

	def setUp(self):
		self.clock = FakeClock(self.start)
		self.orchestrator = build_test_orchestrator(clock=self.clock)
		self.index = self.orchestrator.driver_index
		self.bus = self.orchestrator.bus
		self.passenger = make_passenger('passenger', joined_at=self.start - timedelta(days=30))
		self.driver = make_driver('driver_one', self.index, located_at=self.start)

	def request(self, passenger=None, **extra):
		return self.orchestrator.request_ride(passenger or self.passenger, ride_request_data(**extra))

	def accepted_ride(self, driver=None):
		ride = self.request().ride
		self.clock.advance(seconds=5)
		return self.orchestrator.accept_ride(driver or self.driver, ride.id).ride

	def started_ride(self):
		ride = self.accepted_ride()
		self.clock.advance(minutes=4)
		return self.orchestrator.start_ride(self.driver, ride.id, PICKUP[0], PICKUP[1], driver_photo()).ride


class RideLifecycleTests(DispatchTestCase):
	def test_request_offers_the_ride_to_nearby_drivers(self):
		result = self.request()

		ride = result.ride
		self.assertEqual(ride.status, STATUS_PENDING)
		self.assertEqual(ride.fare_estimated, Decimal('264'))
		self.assertEqual(result.extra['estimated_fare'], 264)
		self.assertEqual(result.extra['route']['polyline'], 'encoded_polyline')
		self.assertEqual(len(result.extra['offered_drivers']), 1)
		self.assertEqual(RideOffer.objects.filter(ride=ride).count(), 1)
		self.assertEqual(self.bus.event_names(self.driver.id), [events.RIDE_NEW_REQUEST])

		payload = self.bus.events_for(self.driver.id)[0][1]
		self.assertEqual(payload['ride_id'], ride.id)
		self.assertEqual(payload['fare']['estimated'], 264)

	def test_full_trip(self):
		ride = self.request().ride
		self.clock.advance(seconds=5)

		accepted = self.orchestrator.accept_ride(self.driver, ride.id)
		self.assertEqual(accepted.ride.status, STATUS_ACCEPTED)
		self.assertEqual(accepted.ride.driver_id, self.driver.id)
		self.assertEqual(self.index.get_state(self.driver.id), STATE_BUSY)
		self.assertEqual(DriverProfile.objects.get(user=self.driver).status, STATE_BUSY)

		self.clock.advance(minutes=4)
		started = self.orchestrator.start_ride(self.driver, ride.id, PICKUP[0], PICKUP[1], driver_photo())
		self.assertEqual(started.ride.status, STATUS_IN_PROGRESS)
		self.assertTrue(started.ride.driver_photo_url.startswith('https://images.example.test/ride-verification/'))

		self.clock.advance(seconds=30)
		tracked = self.orchestrator.update_location(self.driver, ride.id, 24.8650, 67.0050, speed=8.5, heading=45)
		self.assertEqual(tracked.extra['sequence'], 1)

		self.clock.advance(minutes=20)
		completed = self.orchestrator.complete_ride(self.driver, ride.id, DROPOFF[0], DROPOFF[1])

		ride = completed.ride
		self.assertEqual(ride.status, STATUS_COMPLETED)
		self.assertEqual(ride.fare_final, Decimal('264'))
		self.assertEqual(ride.driver_earnings, Decimal('211.20'))
		self.assertEqual(ride.payment_status, 'completed')
		self.assertTrue(ride.payment_transaction_id.startswith('CASH-%d-' % ride.id))
		self.assertEqual(completed.extra['finalFare'], 264)
		self.assertEqual(self.index.get_state(self.driver.id), STATE_AVAILABLE)

		profile = DriverProfile.objects.get(user=self.driver)
		self.assertEqual(profile.completed_rides, 1)
		self.assertEqual(profile.total_earnings, Decimal('211.20'))
		self.assertEqual(User.objects.get(pk=self.passenger.pk).completed_rides, 1)

		self.assertEqual(
			list(RideLocationPoint.objects.filter(ride=ride).values_list('sequence', flat=True)),
			[0, 1]
		)
		self.assertEqual(self.bus.event_names(self.passenger.id), [
			events.RIDE_ACCEPTED,
			events.RIDE_STARTED,
			events.RIDE_DRIVER_LOCATION,
			events.RIDE_COMPLETED,
		])
		self.assertNotIn(events.RIDE_DRIVER_LOCATION, self.bus.event_names(self.driver.id))

	def test_actual_trip_replaces_the_estimate(self):
		ride = self.started_ride()

		result = self.orchestrator.complete_ride(
			self.driver, ride.id, DROPOFF[0], DROPOFF[1], actual_distance_m=2000, actual_duration_s=1200
		)

		# 100 + 2 km * 30 + 20 min * 5
		self.assertEqual(result.ride.fare_final, Decimal('260'))
		self.assertEqual(result.ride.driver_earnings, Decimal('208.00'))

	def test_failed_charge_keeps_the_ride_completed(self):
		ride = self.request(payment_method='card').ride
		self.clock.advance(seconds=5)
		self.orchestrator.accept_ride(self.driver, ride.id)
		self.orchestrator.start_ride(self.driver, ride.id, PICKUP[0], PICKUP[1], driver_photo())

		result = self.orchestrator.complete_ride(self.driver, ride.id, DROPOFF[0], DROPOFF[1])

		self.assertEqual(result.ride.status, STATUS_COMPLETED)
		self.assertEqual(result.ride.payment_status, 'failed')
		self.assertEqual(result.extra['paymentStatus'], 'failed')

	def test_subscription_ride_uses_one_ride(self):
		PassengerProfile.objects.filter(user=self.passenger).update(
			subscription_active=True, subscription_rides_remaining=2
		)
		ride = self.request(ride_type='subscription').ride
		self.clock.advance(seconds=5)
		self.orchestrator.accept_ride(self.driver, ride.id)
		self.orchestrator.start_ride(self.driver, ride.id, PICKUP[0], PICKUP[1], driver_photo())

		self.orchestrator.complete_ride(self.driver, ride.id, DROPOFF[0], DROPOFF[1])

		self.assertEqual(PassengerProfile.objects.get(user=self.passenger).subscription_rides_remaining, 1)

	def test_subscription_ride_needs_an_active_subscription(self):
		with self.assertRaises(InvalidRideRequestError) as ctx:
			self.request(ride_type='subscription')

		self.assertEqual(ctx.exception.reason, 'NO_ACTIVE_SUBSCRIPTION')

	def test_one_active_ride_per_passenger(self):
		self.accepted_ride()

		with self.assertRaises(ActiveRideExistsError) as ctx:
			self.request()

		self.assertEqual(ctx.exception.current_status, STATUS_ACCEPTED)

	def test_no_drivers_tells_the_passenger(self):
		self.index.set_state(self.driver.id, STATE_OFFLINE)

		result = self.request()

		self.assertEqual(result.ride.status, STATUS_PENDING)
		self.assertEqual(result.extra['matching_reason'], 'NO_DRIVERS')
		self.assertEqual(self.bus.event_names(self.passenger.id), [events.RIDE_NO_DRIVERS])

	def test_invalid_coordinates_are_rejected(self):
		with self.assertRaises(InvalidRideRequestError) as ctx:
			self.request(pickup=(95.0, 67.0))

		self.assertEqual(ctx.exception.reason, 'INVALID_COORDINATES')
		self.assertFalse(Ride.objects.exists())

	def test_address_only_request_is_geocoded(self):
		self.orchestrator.geocoder = FakeGeocoder({'Empress Market, Karachi': (24.8615, 67.0280)})
		data = ride_request_data()
		data.update(pickup_latitude=None, pickup_longitude=None, pickup_address='Empress Market, Karachi')

		ride = self.orchestrator.request_ride(self.passenger, data).ride

		self.assertEqual(ride.pickup_point, (24.8615, 67.028))

	def test_unknown_address_fails_the_request(self):
		data = ride_request_data()
		data.update(dropoff_latitude=None, dropoff_longitude=None, dropoff_address='Nowhere at all')

		with self.assertRaises(InvalidRideRequestError) as ctx:
			self.orchestrator.request_ride(self.passenger, data)

		self.assertEqual(ctx.exception.reason, 'GEOCODING_FAILED')

	def test_route_falls_back_to_straight_line(self):
		self.orchestrator.router = FailingRouter()
		expected = haversine_route(PICKUP, DROPOFF, 30)

		ride = self.request().ride
		estimate = self.orchestrator.estimate(PICKUP, DROPOFF)

		self.assertIsNone(ride.route_polyline)
		self.assertTrue(ride.route_is_estimate)
		self.assertEqual(ride.route_distance_m, expected.distance_m)
		self.assertEqual(ride.route_duration_s, expected.duration_s)
		self.assertEqual(estimate['route']['distance'], expected.distance_m)
		self.assertTrue(estimate['route']['isEstimate'])


class AcceptRideTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		self.driver_two = make_driver('driver_two', self.index, location=(24.8660, 67.0060), located_at=self.start)

	def test_first_accept_wins(self):
		ride = self.request().ride
		self.assertEqual(RideOffer.objects.filter(ride=ride).count(), 2)

		self.orchestrator.accept_ride(self.driver, ride.id)
		with self.assertRaises(InvalidTransition) as ctx:
			self.orchestrator.accept_ride(self.driver_two, ride.id)

		self.assertEqual(ctx.exception.reason, 'ALREADY_ACCEPTED')
		self.assertEqual(ctx.exception.current_status, STATUS_ACCEPTED)
		self.assertEqual(ctx.exception.status_code, 409)
		self.assertEqual(Ride.objects.get(pk=ride.id).driver_id, self.driver.id)
		self.assertEqual(self.index.get_state(self.driver.id), STATE_BUSY)
		self.assertEqual(self.index.get_state(self.driver_two.id), STATE_AVAILABLE)
		self.assertEqual(RideOffer.objects.get(ride=ride, driver=self.driver_two).status, OFFER_EXPIRED)
		self.assertIn(events.RIDE_OFFER_CLOSED, self.bus.event_names(self.driver_two.id))

	def test_offer_expires_after_fifteen_seconds(self):
		ride = self.request().ride
		self.clock.advance(seconds=16)

		with self.assertRaises(OfferExpiredError):
			self.orchestrator.accept_ride(self.driver, ride.id)

		self.assertEqual(Ride.objects.get(pk=ride.id).status, STATUS_PENDING)
		self.assertEqual(self.index.get_state(self.driver.id), STATE_AVAILABLE)

	def test_driver_too_far_from_pickup(self):
		far = make_driver('far_driver', self.index, location=FAR_AWAY, located_at=self.start)
		ride = self.request().ride

		with self.assertRaises(DriverTooFarError):
			self.orchestrator.accept_ride(far, ride.id)

	def test_driver_must_be_available(self):
		ride = self.request().ride
		self.index.set_state(self.driver.id, STATE_OFFLINE)

		with self.assertRaises(DriverNotAvailableError) as ctx:
			self.orchestrator.accept_ride(self.driver, ride.id)

		self.assertEqual(ctx.exception.current_status, STATUS_PENDING)

	def test_unapproved_driver_cannot_accept(self):
		newcomer = make_driver('newcomer', self.index, approved=False, located_at=self.start)
		ride = self.request().ride

		with self.assertRaises(DriverNotApprovedError):
			self.orchestrator.accept_ride(newcomer, ride.id)

	def test_unknown_ride(self):
		with self.assertRaises(RideNotFoundError):
			self.orchestrator.accept_ride(self.driver, 9999)


class RejectOfferTests(DispatchTestCase):
	def test_last_rejection_rematches_to_new_drivers(self):
		ride = self.request().ride
		latecomer = make_driver('latecomer', self.index, located_at=self.start)

		result = self.orchestrator.reject_offer(self.driver, ride.id)

		self.assertTrue(result.extra['rematched'])
		self.assertEqual(RideOffer.objects.get(ride=ride, driver=self.driver).status, OFFER_REJECTED)
		offer = RideOffer.objects.get(ride=ride, driver=latecomer)
		self.assertEqual(offer.order, 1)
		self.assertEqual(self.bus.event_names(latecomer.id), [events.RIDE_NEW_REQUEST])

	def test_rejection_with_nobody_left(self):
		ride = self.request().ride

		result = self.orchestrator.reject_offer(self.driver, ride.id)

		self.assertFalse(result.extra['rematched'])
		self.assertIn(events.RIDE_NO_DRIVERS, self.bus.event_names(self.passenger.id))

	def test_rejected_driver_cannot_accept_or_reject_again(self):
		ride = self.request().ride
		self.orchestrator.reject_offer(self.driver, ride.id)

		with self.assertRaises(OfferNotFoundError):
			self.orchestrator.reject_offer(self.driver, ride.id)
		with self.assertRaises(OfferNotFoundError):
			self.orchestrator.accept_ride(self.driver, ride.id)


class ConcurrentAcceptTests(TransactionTestCase):
	start = datetime(2026, 10, 19, 12, 0, tzinfo=KARACHI)

	def setUp(self):
		self.clock = FakeClock(self.start)
		self.orchestrator = build_test_orchestrator(clock=self.clock)
		self.index = self.orchestrator.driver_index
		self.passenger = make_passenger('passenger', joined_at=self.start - timedelta(days=30))
		self.drivers = [
			make_driver('driver_one', self.index, located_at=self.start),
			make_driver('driver_two', self.index, located_at=self.start),
		]
		self.ride = self.orchestrator.request_ride(self.passenger, ride_request_data()).ride

	def test_simultaneous_accepts_have_one_winner(self):
		barrier = threading.Barrier(len(self.drivers))
		outcomes = {}

		def attempt(driver):
			try:
				barrier.wait()
				self.orchestrator.accept_ride(driver, self.ride.id)
				outcomes[driver.id] = 'won'
			except Exception as exc:
				outcomes[driver.id] = getattr(exc, 'reason', repr(exc))
			finally:
				connection.close()

		threads = [threading.Thread(target=attempt, args=(driver,)) for driver in self.drivers]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join(timeout=30)

		self.assertEqual(sorted(outcomes.values()), ['ALREADY_ACCEPTED', 'won'])
		winner = next(driver_id for driver_id, outcome in outcomes.items() if outcome == 'won')
		loser = next(driver_id for driver_id in outcomes if driver_id != winner)

		ride = Ride.objects.get(pk=self.ride.id)
		self.assertEqual(ride.status, STATUS_ACCEPTED)
		self.assertEqual(ride.driver_id, winner)
		self.assertEqual(self.index.get_state(winner), STATE_BUSY)
		self.assertEqual(self.index.get_state(loser), STATE_AVAILABLE)
		self.assertEqual(DriverProfile.objects.get(user_id=winner).status, STATE_BUSY)
		self.assertEqual(DriverProfile.objects.get(user_id=loser).status, STATE_AVAILABLE)
		self.assertEqual(list(RideOffer.objects.filter(status='accepted').values_list('driver_id', flat=True)), [winner])
		self.assertEqual(self.orchestrator.bus.event_names(self.passenger.id).count(events.RIDE_ACCEPTED), 1)


class TrackingTests(DispatchTestCase):
	def test_start_needs_a_photo(self):
		ride = self.accepted_ride()

		with self.assertRaises(InvalidRideRequestError) as ctx:
			self.orchestrator.start_ride(self.driver, ride.id, PICKUP[0], PICKUP[1], None)

		self.assertEqual(ctx.exception.reason, 'PHOTO_REQUIRED')

	def test_only_assigned_driver_may_start(self):
		other = make_driver('other', self.index, located_at=self.start)
		ride = self.accepted_ride()

		with self.assertRaises(NotRideParticipantError):
			self.orchestrator.start_ride(other, ride.id, PICKUP[0], PICKUP[1], driver_photo())

	def test_location_only_while_in_progress(self):
		ride = self.accepted_ride()

		with self.assertRaises(InvalidTransition) as ctx:
			self.orchestrator.update_location(self.driver, ride.id, 24.8650, 67.0050)

		self.assertEqual(ctx.exception.current_status, STATUS_ACCEPTED)

	def test_older_location_is_refused(self):
		ride = self.started_ride()
		self.orchestrator.update_location(self.driver, ride.id, 24.8650, 67.0050, ts=self.clock.advance(seconds=10))

		with self.assertRaises(InvalidTransition) as ctx:
			self.orchestrator.update_location(
				self.driver, ride.id, 24.8660, 67.0060, ts=self.clock() - timedelta(seconds=5)
			)

		self.assertEqual(ctx.exception.reason, 'STALE_LOCATION')
		self.assertEqual(RideLocationPoint.objects.filter(ride=ride).count(), 2)

	def test_three_updates_in_timestamp_order(self):
		ride = self.started_ride()
		path = [(24.8620, 67.0025), (24.8650, 67.0050), (24.8680, 67.0080)]

		sequences = [
			self.orchestrator.update_location(
				self.driver, ride.id, lat, lon, ts=self.clock.advance(seconds=10)
			).extra['sequence']
			for lat, lon in path
		]

		self.assertEqual(sequences, [1, 2, 3])
		points = RideLocationPoint.objects.filter(ride=ride).order_by('sequence')
		self.assertEqual([(float(p.latitude), float(p.longitude)) for p in points][1:], path)
		self.assertEqual(float(Ride.objects.get(pk=ride.id).current_latitude), 24.868)
		relayed = [
			payload['location']['lat'] for event, payload in self.bus.events_for(self.passenger.id)
			if event == events.RIDE_DRIVER_LOCATION
		]
		self.assertEqual(relayed, [lat for lat, _ in path])
		self.assertNotIn(events.RIDE_DRIVER_LOCATION, self.bus.event_names(self.driver.id))

	def test_complete_requires_in_progress(self):
		ride = self.accepted_ride()

		with self.assertRaises(InvalidTransition):
			self.orchestrator.complete_ride(self.driver, ride.id, DROPOFF[0], DROPOFF[1])


class CancellationTests(DispatchTestCase):
	start = datetime(2026, 10, 19, 8, 15, tzinfo=KARACHI)

	def test_passenger_cancels_accepted_ride_in_peak_hour(self):
		ride = self.accepted_ride()
		self.clock.advance(seconds=175)

		result = self.orchestrator.cancel_ride(self.passenger, ride.id, 'Changed plans')

		ride = Ride.objects.get(pk=ride.id)
		self.assertEqual(result.extra['cancellationFee'], 150)
		self.assertEqual(ride.status, STATUS_CANCELLED)
		self.assertEqual(ride.cancelled_by, 'passenger')
		self.assertEqual(ride.cancellation_fee, Decimal('150'))
		self.assertEqual(self.index.get_state(self.driver.id), STATE_AVAILABLE)
		self.assertIn(events.RIDE_CANCELLED, self.bus.event_names(self.driver.id))
		self.assertNotIn(events.RIDE_CANCELLED, self.bus.event_names(self.passenger.id))

	def test_subscriber_with_no_rides_left_still_pays_half(self):
		PassengerProfile.objects.filter(user=self.passenger).update(
			subscription_active=True,
			subscription_rides_remaining=0,
			subscription_expires_at=self.start + timedelta(days=10),
		)
		ride = self.accepted_ride()
		self.clock.advance(seconds=175)

		result = self.orchestrator.cancel_ride(self.passenger, ride.id)

		# 150 peak fee halved, rounded to the nearest 10
		self.assertEqual(result.extra['cancellationFee'], 80)

	def test_expired_subscription_gets_no_discount(self):
		PassengerProfile.objects.filter(user=self.passenger).update(
			subscription_active=True,
			subscription_rides_remaining=5,
			subscription_expires_at=self.start - timedelta(days=1),
		)
		ride = self.accepted_ride()
		self.clock.advance(seconds=175)

		result = self.orchestrator.cancel_ride(self.passenger, ride.id)

		self.assertEqual(result.extra['cancellationFee'], 150)

	def test_pending_cancellation_closes_offers(self):
		ride = self.request().ride
		self.clock.advance(seconds=10)

		result = self.orchestrator.cancel_ride(self.passenger, ride.id)

		self.assertEqual(result.extra['cancellationFee'], 0)
		self.assertEqual(RideOffer.objects.get(ride=ride).status, OFFER_EXPIRED)
		self.assertIn(events.RIDE_CANCELLED_UNASSIGNED, self.bus.event_names(self.driver.id))

	def test_passenger_window_is_ten_minutes(self):
		ride = self.request().ride
		self.clock.advance(minutes=11)

		with self.assertRaises(CancellationNotAllowedError) as ctx:
			self.orchestrator.cancel_ride(self.passenger, ride.id)

		self.assertEqual(ctx.exception.reason, 'CANCELLATION_WINDOW_EXCEEDED')
		self.assertEqual(ctx.exception.current_status, STATUS_PENDING)

	def test_in_progress_ride_cannot_be_cancelled(self):
		ride = self.started_ride()

		with self.assertRaises(CancellationNotAllowedError):
			self.orchestrator.cancel_ride(self.passenger, ride.id)

	def test_driver_cancellation_is_counted(self):
		ride = self.accepted_ride()
		self.clock.advance(minutes=3)

		result = self.orchestrator.cancel_ride(self.driver, ride.id, 'Vehicle trouble')

		# standard driver fee 50 at peak x1.5, less 20 for a 4.8 rating
		self.assertEqual(result.extra['cancellationFee'], 60)
		self.assertEqual(DriverProfile.objects.get(user=self.driver).cancelled_rides, 1)
		self.assertIn(events.RIDE_CANCELLED, self.bus.event_names(self.passenger.id))

	def test_admin_may_cancel_any_ride(self):
		admin = User.objects.create_user(username='dispatcher', password='admin1234', role=User.ROLE_ADMIN)
		ride = self.accepted_ride()

		result = self.orchestrator.cancel_ride(admin, ride.id, 'Safety review')

		self.assertEqual(result.ride.cancelled_by, 'admin')
		self.assertEqual(result.extra['cancellationFee'], 0)

	def test_strangers_cannot_cancel(self):
		stranger = make_passenger('stranger')
		ride = self.request().ride

		with self.assertRaises(NotRideParticipantError):
			self.orchestrator.cancel_ride(stranger, ride.id)


class ChatTests(DispatchTestCase):
	def test_message_goes_to_the_other_participant(self):
		ride = self.accepted_ride()

		delivered = self.orchestrator.send_chat_message(self.passenger, ride.id, '  I am at the gate  ')

		self.assertTrue(delivered)
		received = [payload for event, payload in self.bus.events_for(self.driver.id) if event == events.CHAT_RECEIVE]
		self.assertEqual(len(received), 1)
		self.assertEqual(received[0]['message'], 'I am at the gate')
		self.assertEqual(received[0]['senderId'], self.passenger.id)
		self.assertEqual(received[0]['senderRole'], 'passenger')
		self.assertNotIn(events.CHAT_RECEIVE, self.bus.event_names(self.passenger.id))

	def test_driver_typing_reaches_the_passenger(self):
		ride = self.started_ride()

		self.orchestrator.send_typing(self.driver, ride.id, True)

		typing = [payload for event, payload in self.bus.events_for(self.passenger.id) if event == events.CHAT_TYPING]
		self.assertEqual(typing, [{'rideId': ride.id, 'senderId': self.driver.id, 'isTyping': True}])

	def test_strangers_cannot_chat(self):
		ride = self.accepted_ride()
		stranger = make_passenger('stranger')

		with self.assertRaises(NotRideParticipantError):
			self.orchestrator.send_chat_message(stranger, ride.id, 'hello')

	def test_chat_needs_an_assigned_ride(self):
		ride = self.request().ride

		with self.assertRaises(InvalidTransition) as ctx:
			self.orchestrator.send_chat_message(self.passenger, ride.id, 'anyone?')

		self.assertEqual(ctx.exception.current_status, STATUS_PENDING)

	def test_blank_message(self):
		ride = self.accepted_ride()

		with self.assertRaises(InvalidRideRequestError) as ctx:
			self.orchestrator.send_chat_message(self.passenger, ride.id, '   ')

		self.assertEqual(ctx.exception.reason, 'INVALID_MESSAGE')


class RatingTests(DispatchTestCase):
	def completed_ride(self):
		ride = self.started_ride()
		return self.orchestrator.complete_ride(self.driver, ride.id, DROPOFF[0], DROPOFF[1]).ride

	def test_each_side_rates_once(self):
		ride = self.completed_ride()

		self.orchestrator.rate_ride(self.passenger, ride.id, 4, 'Smooth ride')
		self.orchestrator.rate_ride(self.driver, ride.id, 5)

		ride = Ride.objects.get(pk=ride.id)
		self.assertEqual(ride.rating_by_passenger, 4)
		self.assertEqual(ride.rating_by_driver, 5)
		self.assertEqual(DriverProfile.objects.get(user=self.driver).rating, Decimal('4.00'))
		self.assertEqual(PassengerProfile.objects.get(user=self.passenger).rating, Decimal('5.00'))

		with self.assertRaises(InvalidTransition) as ctx:
			self.orchestrator.rate_ride(self.passenger, ride.id, 1)
		self.assertEqual(ctx.exception.reason, 'ALREADY_RATED')

	def test_rated_party_is_told(self):
		ride = self.completed_ride()

		self.orchestrator.rate_ride(self.passenger, ride.id, 4, 'Smooth ride')

		rated = [payload for event, payload in self.bus.events_for(self.driver.id) if event == events.RIDE_RATED]
		self.assertEqual(len(rated), 1)
		self.assertEqual(rated[0]['rating'], 4)
		self.assertEqual(rated[0]['ratedBy'], 'passenger')
		self.assertEqual(rated[0]['message'], 'You received a 4-star rating')
		self.assertNotIn(events.RIDE_RATED, self.bus.event_names(self.passenger.id))

	def test_running_mean(self):
		DriverProfile.objects.filter(user=self.driver).update(rating=Decimal('4.00'), rating_count=3)
		ride = self.completed_ride()

		self.orchestrator.rate_ride(self.passenger, ride.id, 5)

		self.assertEqual(DriverProfile.objects.get(user=self.driver).rating, Decimal('4.25'))

	def test_only_completed_rides_are_rated(self):
		ride = self.accepted_ride()

		with self.assertRaises(InvalidTransition) as ctx:
			self.orchestrator.rate_ride(self.passenger, ride.id, 5)

		self.assertEqual(ctx.exception.current_status, STATUS_ACCEPTED)

	def test_score_must_be_one_to_five(self):
		ride = self.completed_ride()

		with self.assertRaises(InvalidRideRequestError):
			self.orchestrator.rate_ride(self.passenger, ride.id, 6)


class ScheduledRideTests(DispatchTestCase):
	def test_scheduled_ride_waits_then_activates(self):
		soon = self.request(scheduled_at=self.start + timedelta(minutes=10)).ride
		later = self.request(scheduled_at=self.start + timedelta(hours=2)).ride

		self.assertEqual(soon.status, STATUS_SCHEDULED)
		self.assertEqual(soon.ride_type, 'scheduled')
		self.assertFalse(RideOffer.objects.exists())

		report = ScheduledRideActivator(self.orchestrator).run_once(self.clock())

		self.assertEqual(report.checked, 1)
		self.assertEqual(report.activated, [soon.id])
		self.assertEqual(report.drivers_notified, 1)
		self.assertEqual(Ride.objects.get(pk=soon.id).status, STATUS_PENDING)
		self.assertEqual(Ride.objects.get(pk=later.id).status, STATUS_SCHEDULED)
		self.assertIn(events.RIDE_SCHEDULED_ACTIVATED, self.bus.event_names(self.passenger.id))
		self.assertEqual(self.bus.event_names(self.driver.id), [events.RIDE_NEW_REQUEST])

	def test_activation_before_window_is_refused(self):
		ride = self.request(scheduled_at=self.start + timedelta(hours=2)).ride

		with self.assertRaises(InvalidTransition) as ctx:
			self.orchestrator.activate_scheduled_ride(ride.id)

		self.assertEqual(ctx.exception.reason, 'ACTIVATION_TOO_EARLY')

	def test_schedule_must_be_in_the_future(self):
		with self.assertRaises(InvalidRideRequestError) as ctx:
			self.request(scheduled_at=self.start - timedelta(minutes=1))

		self.assertEqual(ctx.exception.reason, 'INVALID_SCHEDULE')

	def test_passenger_cancels_scheduled_ride_for_free(self):
		ride = self.request(scheduled_at=self.start + timedelta(hours=2)).ride

		result = self.orchestrator.cancel_ride(self.passenger, ride.id)

		self.assertEqual(result.ride.status, STATUS_CANCELLED)
		self.assertEqual(result.extra['cancellationFee'], 0)


class StateMachineTests(TestCase):
	def test_transition_table(self):
		self.assertTrue(can_transition(STATUS_SCHEDULED, STATUS_PENDING))
		self.assertTrue(can_transition(STATUS_ACCEPTED, STATUS_CANCELLED))
		self.assertFalse(can_transition(STATUS_IN_PROGRESS, STATUS_CANCELLED))
		self.assertFalse(can_transition(STATUS_COMPLETED, STATUS_PENDING))

	def test_cancel_reports_a_lost_race(self):
		passenger = make_passenger('passenger')
		ride = Ride.objects.create(
			passenger=passenger,
			status=STATUS_ACCEPTED,
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			dropoff_latitude=DROPOFF[0],
			dropoff_longitude=DROPOFF[1],
		)

		cancelled = RideStateMachine().cancel(ride.id, STATUS_PENDING, 'passenger', '', Decimal('0'))

		self.assertFalse(cancelled)
		self.assertEqual(Ride.objects.get(pk=ride.id).status, STATUS_ACCEPTED)
