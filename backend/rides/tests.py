from datetime import datetime, timedelta
from io import StringIO
from unittest.mock import patch
from zoneinfo import ZoneInfo

from django.core.management import call_command
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from common.testing import (
	DROPOFF,
	PICKUP,
	FakeClock,
	FakeSMSGateway,
	RecordingBus,
	build_test_orchestrator,
	make_driver,
	make_passenger,
	ride_request_data,
)
from realtime.geo import STATE_BUSY, reset_driver_index
from services.ride_management import set_orchestrator
from services.safety.sos import SOSPipeline
from .constants import STATUS_ACCEPTED, STATUS_CANCELLED, STATUS_PENDING, STATUS_SCHEDULED
from .models import Ride, RideOffer
from .tasks import activate_scheduled_ride_task, activate_scheduled_rides_task
from .views import (
	accept_ride,
	cancel_ride,
	create_ride_request,
	fare_estimate,
	rate_ride,
	ride_detail,
	ride_history,
	trigger_sos,
)

KARACHI = ZoneInfo('Asia/Karachi')


class RideAPITestCase(TestCase):
	start = datetime(2026, 10, 19, 12, 0, tzinfo=KARACHI)

	def setUp(self):
		self.factory = APIRequestFactory()
		self.clock = FakeClock(self.start)
		self.orchestrator = build_test_orchestrator(clock=self.clock)
		self.index = self.orchestrator.driver_index
		self.bus = self.orchestrator.bus
		set_orchestrator(self.orchestrator)

		self.passenger = make_passenger('passenger', joined_at=self.start - timedelta(days=30))
		self.driver_one = make_driver('driver_one', self.index, located_at=self.start)
		self.driver_two = make_driver('driver_two', self.index, located_at=self.start)

	def tearDown(self):
		set_orchestrator(None)
		reset_driver_index()

	def call(self, view, method, user, path='/api/rides/', data=None, **kwargs):
		request = getattr(self.factory, method)(path, data, format='json')
		if user is not None:
			force_authenticate(request, user=user)
		return view(request, **kwargs)

	def pending_ride(self):
		return self.orchestrator.request_ride(self.passenger, ride_request_data()).ride


class CreateRideRequestTests(RideAPITestCase):
	def test_camel_case_body_creates_a_pending_ride(self):
		response = self.call(create_ride_request, 'post', self.passenger, data={
			'pickupLat': PICKUP[0],
			'pickupLng': PICKUP[1],
			'pickupAddress': 'Saddar, Karachi',
			'dropoffLat': DROPOFF[0],
			'dropoffLng': DROPOFF[1],
			'dropoffAddress': 'Burns Road, Karachi',
			'vehicleType': 'car',
			'paymentMethod': 'cash',
		})

		self.assertEqual(response.status_code, 201)
		self.assertTrue(response.data['success'])
		ride = response.data['data']['ride']
		self.assertEqual(ride['status'], STATUS_PENDING)
		self.assertEqual(ride['fare']['estimated'], 264)
		self.assertEqual(ride['pickup']['address'], 'Saddar, Karachi')
		self.assertEqual(RideOffer.objects.filter(ride_id=ride['id']).count(), 2)

	def test_scheduled_at_creates_a_scheduled_ride(self):
		response = self.call(create_ride_request, 'post', self.passenger, data={
			'pickupLat': PICKUP[0],
			'pickupLng': PICKUP[1],
			'dropoffLat': DROPOFF[0],
			'dropoffLng': DROPOFF[1],
			'scheduledAt': (self.start + timedelta(hours=2)).isoformat(),
		})

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['data']['ride']['status'], STATUS_SCHEDULED)
		self.assertFalse(RideOffer.objects.exists())

	def test_half_a_coordinate_pair_is_rejected(self):
		response = self.call(create_ride_request, 'post', self.passenger, data={
			'pickupLat': PICKUP[0],
			'dropoffLat': DROPOFF[0],
			'dropoffLng': DROPOFF[1],
		})

		self.assertEqual(response.status_code, 400)
		self.assertFalse(response.data['success'])
		self.assertIn('pickup', response.data['errors'])
		self.assertFalse(Ride.objects.exists())

	def test_drivers_cannot_request_rides(self):
		response = self.call(create_ride_request, 'post', self.driver_one, data={
			'pickupLat': PICKUP[0],
			'pickupLng': PICKUP[1],
			'dropoffLat': DROPOFF[0],
			'dropoffLng': DROPOFF[1],
		})

		self.assertEqual(response.status_code, 403)

	def test_second_ride_while_one_is_accepted(self):
		ride = self.pending_ride()
		self.clock.advance(seconds=5)
		self.orchestrator.accept_ride(self.driver_one, ride.id)

		response = self.call(create_ride_request, 'post', self.passenger, data={
			'pickupLat': PICKUP[0],
			'pickupLng': PICKUP[1],
			'dropoffLat': DROPOFF[0],
			'dropoffLng': DROPOFF[1],
		})

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['errors']['reason'], 'ACTIVE_RIDE_EXISTS')


class FareEstimateTests(RideAPITestCase):
	def test_anonymous_estimate(self):
		request = self.factory.get('/api/rides/estimate/', {
			'pickupLat': PICKUP[0],
			'pickupLng': PICKUP[1],
			'dropoffLat': DROPOFF[0],
			'dropoffLng': DROPOFF[1],
		})
		response = fare_estimate(request)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['data']['fare']['total'], 264)
		self.assertEqual(response.data['data']['route']['distance'], 1300)
		self.assertFalse(Ride.objects.exists())

	def test_missing_params(self):
		request = self.factory.get('/api/rides/estimate/', {'pickupLat': PICKUP[0]})
		response = fare_estimate(request)

		self.assertEqual(response.status_code, 400)
		self.assertFalse(response.data['success'])


class AcceptRideViewTests(RideAPITestCase):
	def test_first_driver_wins(self):
		ride = self.pending_ride()
		self.clock.advance(seconds=5)

		response = self.call(accept_ride, 'put', self.driver_one, ride_id=ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['data']['ride']['status'], STATUS_ACCEPTED)
		self.assertEqual(response.data['data']['ride']['driver']['id'], self.driver_one.id)
		self.assertEqual(self.index.get_state(self.driver_one.id), STATE_BUSY)

		response = self.call(accept_ride, 'put', self.driver_two, ride_id=ride.id)

		self.assertEqual(response.status_code, 409)
		self.assertFalse(response.data['success'])
		self.assertEqual(response.data['errors']['reason'], 'ALREADY_ACCEPTED')
		self.assertEqual(response.data['errors']['current_status'], STATUS_ACCEPTED)

	def test_passengers_cannot_accept(self):
		ride = self.pending_ride()

		response = self.call(accept_ride, 'put', self.passenger, ride_id=ride.id)

		self.assertEqual(response.status_code, 403)
		self.assertEqual(Ride.objects.get(pk=ride.id).status, STATUS_PENDING)

	def test_unknown_ride(self):
		response = self.call(accept_ride, 'put', self.driver_one, ride_id=999999)

		self.assertEqual(response.status_code, 404)


class RideParticipantViewTests(RideAPITestCase):
	def test_detail_for_participant_and_stranger(self):
		ride = self.pending_ride()
		stranger = make_passenger('stranger')

		response = self.call(ride_detail, 'get', self.passenger, ride_id=ride.id)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['data']['ride']['id'], ride.id)

		response = self.call(ride_detail, 'get', stranger, ride_id=ride.id)
		self.assertEqual(response.status_code, 403)
		self.assertEqual(response.data['errors']['reason'], 'NOT_PARTICIPANT')

	def test_unauthenticated_detail(self):
		ride = self.pending_ride()

		response = self.call(ride_detail, 'get', None, ride_id=ride.id)

		self.assertIn(response.status_code, (401, 403))
		self.assertFalse(response.data['success'])

	def test_passenger_cancels_pending_ride(self):
		ride = self.pending_ride()

		response = self.call(cancel_ride, 'post', self.passenger, data={'reason': 'Plans changed'}, ride_id=ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['data']['ride']['status'], STATUS_CANCELLED)
		self.assertEqual(response.data['data']['cancellationFee'], 0)
		self.assertEqual(Ride.objects.get(pk=ride.id).cancellation_reason, 'Plans changed')

	def test_rate_completed_ride(self):
		ride = self.pending_ride()
		self.clock.advance(seconds=5)
		self.orchestrator.accept_ride(self.driver_one, ride.id)
		Ride.objects.filter(pk=ride.id).update(status='completed')

		response = self.call(rate_ride, 'post', self.passenger, data={'rating': 4, 'review': 'Smooth'}, ride_id=ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['data']['ride']['ratings']['byPassenger'], 4)

		response = self.call(rate_ride, 'post', self.passenger, data={'rating': 5}, ride_id=ride.id)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['errors']['reason'], 'ALREADY_RATED')

	def test_rating_out_of_range(self):
		ride = self.pending_ride()

		response = self.call(rate_ride, 'post', self.passenger, data={'rating': 7}, ride_id=ride.id)

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['errors']['reason'], 'INVALID_RATING')

	def test_history_lists_own_rides(self):
		self.pending_ride()

		response = self.call(ride_history, 'get', self.passenger)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['data']['count'], 1)


class SOSViewTests(RideAPITestCase):
	def test_trigger_returns_created(self):
		pipeline = SOSPipeline(FakeSMSGateway(), RecordingBus())

		with patch('rides.views.get_sos_pipeline', return_value=pipeline):
			response = self.call(trigger_sos, 'post', self.passenger, data={
				'latitude': PICKUP[0],
				'longitude': PICKUP[1],
				'alertType': 'manual',
			})

		self.assertEqual(response.status_code, 201)
		self.assertTrue(response.data['data']['adminNotified'])
		self.assertEqual(response.data['data']['contactsNotified']['delivered'], 0)


class ScheduledActivationJobTests(RideAPITestCase):
	def test_task_activates_due_rides(self):
		ride = self.orchestrator.request_ride(
			self.passenger, ride_request_data(scheduled_at=self.start + timedelta(minutes=10))
		).ride

		result = activate_scheduled_rides_task()

		self.assertEqual(result['activated'], [ride.id])
		self.assertEqual(result['failed'], [])
		self.assertEqual(Ride.objects.get(pk=ride.id).status, STATUS_PENDING)

	def test_single_ride_task_dispatches_ahead_of_the_window(self):
		ride = self.orchestrator.request_ride(
			self.passenger, ride_request_data(scheduled_at=self.start + timedelta(hours=2))
		).ride

		delivered = activate_scheduled_ride_task(ride.id)

		self.assertEqual(delivered, 2)
		self.assertEqual(Ride.objects.get(pk=ride.id).status, STATUS_PENDING)
		self.assertEqual(RideOffer.objects.filter(ride=ride).count(), 2)

	def test_management_command_reports_the_sweep(self):
		self.orchestrator.request_ride(
			self.passenger, ride_request_data(scheduled_at=self.start + timedelta(hours=3))
		)
		out = StringIO()

		call_command('activate_scheduled_rides', stdout=out)

		self.assertIn('Checked 0 ride(s); activated 0', out.getvalue())
