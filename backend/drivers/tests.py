from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from common.testing import DROPOFF, PICKUP, build_test_orchestrator, make_driver, make_passenger, ride_request_data
from realtime.geo import DriverIndex, STATE_AVAILABLE, STATE_BUSY, STATE_OFFLINE
from rides.constants import STATUS_ACCEPTED
from rides.models import Ride
from services.ride_management import DriverNotApprovedError, InvalidRideRequestError, InvalidTransition
from .models import DriverProfile
from .services import update_driver_location, update_driver_status
from .views import DriverLocationUpdateView, DriverStatusView


class DriverAvailabilityTests(TestCase):
	def setUp(self):
		self.index = DriverIndex()
		self.driver = make_driver('driver_one', state=STATE_OFFLINE)

	def test_going_online_registers_the_driver(self):
		profile = update_driver_status(self.driver, STATE_AVAILABLE, self.index)

		self.assertEqual(profile.status, STATE_AVAILABLE)
		self.assertEqual(DriverProfile.objects.get(user=self.driver).status, STATE_AVAILABLE)
		entry = self.index.get(self.driver.id)
		self.assertEqual(entry.state, STATE_AVAILABLE)
		self.assertTrue(entry.is_dispatchable)

	def test_busy_cannot_be_requested(self):
		with self.assertRaises(InvalidRideRequestError):
			update_driver_status(self.driver, STATE_BUSY, self.index)

	def test_unapproved_driver_stays_offline(self):
		newcomer = make_driver('newcomer', approved=False, state=STATE_OFFLINE)

		with self.assertRaises(DriverNotApprovedError):
			update_driver_status(newcomer, STATE_AVAILABLE, self.index)

	def test_no_toggling_during_a_ride(self):
		Ride.objects.create(
			passenger=make_passenger('passenger'),
			driver=self.driver,
			status=STATUS_ACCEPTED,
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			dropoff_latitude=DROPOFF[0],
			dropoff_longitude=DROPOFF[1],
		)

		with self.assertRaises(InvalidTransition) as ctx:
			update_driver_status(self.driver, STATE_OFFLINE, self.index)

		self.assertEqual(ctx.exception.current_status, STATUS_ACCEPTED)

	def test_accept_landing_before_the_toggle_takes_the_lock(self):
		orchestrator = build_test_orchestrator(driver_index=self.index)
		update_driver_status(self.driver, STATE_AVAILABLE, self.index)
		ride = orchestrator.request_ride(make_passenger('passenger'), ride_request_data()).ride
		lock_for = self.index.lock_for
		accepted = []

		def accept_then_lock(driver_id):
			if not accepted:
				accepted.append(driver_id)
				orchestrator.accept_ride(self.driver, ride.id)
			return lock_for(driver_id)

		with patch.object(self.index, 'lock_for', side_effect=accept_then_lock):
			with self.assertRaises(InvalidTransition):
				update_driver_status(self.driver, STATE_OFFLINE, self.index)

		self.assertEqual(Ride.objects.get(pk=ride.id).status, STATUS_ACCEPTED)
		self.assertEqual(self.index.get_state(self.driver.id), STATE_BUSY)
		self.assertEqual(DriverProfile.objects.get(user=self.driver).status, STATE_BUSY)

	def test_busy_driver_without_a_ride_row_stays_busy(self):
		update_driver_status(self.driver, STATE_AVAILABLE, self.index)
		self.index.set_state(self.driver.id, STATE_BUSY)

		with self.assertRaises(InvalidTransition) as ctx:
			update_driver_status(self.driver, STATE_OFFLINE, self.index)

		self.assertEqual(ctx.exception.reason, 'DRIVER_BUSY')
		self.assertEqual(self.index.get_state(self.driver.id), STATE_BUSY)


class DriverLocationTests(TestCase):
	def setUp(self):
		self.index = DriverIndex()
		self.driver = make_driver('driver_one')
		self.now = timezone.now()

	def test_location_lands_in_index_and_profile(self):
		accepted = update_driver_location(self.driver, 24.8700, 67.0100, self.index, self.now)

		self.assertTrue(accepted)
		self.assertEqual(self.index.get(self.driver.id).latitude, 24.87)
		self.assertEqual(self.index.get_state(self.driver.id), STATE_AVAILABLE)
		self.assertEqual(DriverProfile.objects.get(user=self.driver).current_latitude, Decimal('24.870000'))

	def test_report_does_not_undo_an_accept_that_lands_first(self):
		driver = make_driver('driver_two', self.index)
		orchestrator = build_test_orchestrator(driver_index=self.index)
		ride = orchestrator.request_ride(make_passenger('passenger'), ride_request_data()).ride
		lock_for = self.index.lock_for
		accepted = []

		def accept_then_lock(driver_id):
			if not accepted:
				accepted.append(driver_id)
				orchestrator.accept_ride(driver, ride.id)
			return lock_for(driver_id)

		with patch.object(self.index, 'lock_for', side_effect=accept_then_lock):
			update_driver_location(driver, 24.8700, 67.0100, self.index, timezone.now())

		self.assertEqual(self.index.get_state(driver.id), STATE_BUSY)
		self.assertEqual(DriverProfile.objects.get(user=driver).status, STATE_BUSY)

	def test_older_report_is_ignored(self):
		update_driver_location(self.driver, 24.8700, 67.0100, self.index, self.now)

		accepted = update_driver_location(self.driver, 24.9000, 67.0500, self.index, self.now - timedelta(seconds=3))

		self.assertFalse(accepted)
		self.assertEqual(DriverProfile.objects.get(user=self.driver).current_latitude, Decimal('24.870000'))

	def test_invalid_coordinates(self):
		with self.assertRaises(InvalidRideRequestError):
			update_driver_location(self.driver, 91, 67.0, self.index)


class DriverViewTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.index = DriverIndex()
		self.driver = make_driver('driver_one', state=STATE_OFFLINE)
		self.passenger = make_passenger('passenger')

		patcher = patch('drivers.views.get_driver_index', return_value=self.index)
		patcher.start()
		self.addCleanup(patcher.stop)

	def test_put_availability(self):
		request = self.factory.put('/api/rides/driver/availability/', {'status': 'available'}, format='json')
		force_authenticate(request, user=self.driver)
		response = DriverStatusView.as_view()(request)

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['success'])
		self.assertEqual(response.data['data']['status'], 'available')
		self.assertEqual(self.index.get_state(self.driver.id), STATE_AVAILABLE)

	def test_invalid_status_value(self):
		request = self.factory.put('/api/rides/driver/availability/', {'status': 'busy'}, format='json')
		force_authenticate(request, user=self.driver)
		response = DriverStatusView.as_view()(request)

		self.assertEqual(response.status_code, 400)
		self.assertFalse(response.data['success'])

	def test_passengers_are_forbidden(self):
		request = self.factory.get('/api/rides/driver/availability/')
		force_authenticate(request, user=self.passenger)
		response = DriverStatusView.as_view()(request)

		self.assertEqual(response.status_code, 403)
		self.assertFalse(response.data['success'])

	def test_location_put_and_get(self):
		request = self.factory.put(
			'/api/rides/driver/location/', {'latitude': 24.87, 'longitude': 67.01}, format='json'
		)
		force_authenticate(request, user=self.driver)
		response = DriverLocationUpdateView.as_view()(request)

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['data']['accepted'])

		request = self.factory.get('/api/rides/driver/location/')
		force_authenticate(request, user=self.driver)
		response = DriverLocationUpdateView.as_view()(request)

		self.assertEqual(response.data['data']['latitude'], 24.87)
