from decimal import Decimal

from django.test import TestCase

from accounts.models import User
from common.testing import DROPOFF, PICKUP, FakeSMSGateway, RecordingBus, make_driver, make_passenger
from passengers.models import EmergencyContact
from realtime import events
from rides.constants import STATUS_IN_PROGRESS
from rides.models import Ride, SOSAlert
from services.ride_management import LocationUnavailableError, NotRideParticipantError
from .sos import SOSPipeline


class SOSPipelineTests(TestCase):
	def setUp(self):
		self.bus = RecordingBus()
		self.sms = FakeSMSGateway(failing_numbers={'03330000002'})
		self.pipeline = SOSPipeline(self.sms, self.bus)
		self.passenger = make_passenger('passenger')
		profile = self.passenger.passenger_profile
		EmergencyContact.objects.create(passenger=profile, name='Ayesha', phone_number='03330000001', relation='Sister')
		EmergencyContact.objects.create(passenger=profile, name='Bilal', phone_number='03330000002', relation='Friend')

	def test_partial_sms_delivery_is_reported(self):
		result = self.pipeline.trigger(self.passenger, {
			'latitude': 24.8607,
			'longitude': 67.0011,
			'address': 'Saddar, Karachi',
		})

		self.assertEqual(result.delivered, 1)
		self.assertEqual(result.failed, 1)
		self.assertTrue(result.admin_notified)
		self.assertEqual(len(self.sms.sent), 1)
		self.assertIn('https://www.google.com/maps?q=24.8607,67.0011', self.sms.sent[0][1])

		alert = SOSAlert.objects.get(pk=result.alert.id)
		self.assertEqual(alert.severity, 'high')
		self.assertEqual(alert.alert_type, 'manual')
		self.assertEqual([entry['notified'] for entry in alert.contacts_notified], [True, False])
		self.assertTrue(alert.admin_notified)

		admin_events = self.bus.role_events(User.ROLE_ADMIN)
		self.assertEqual([event for event, _ in admin_events], [events.SOS_ALERT])
		self.assertEqual(admin_events[0][1]['alertId'], alert.id)

		data = result.as_dict()
		self.assertEqual(data['contactsNotified']['delivered'], 1)
		self.assertEqual(data['contactsNotified']['failed'], 1)
		self.assertEqual(data['location']['address'], 'Saddar, Karachi')

	def test_location_comes_from_the_active_ride(self):
		driver = make_driver('driver_one')
		ride = Ride.objects.create(
			passenger=self.passenger,
			driver=driver,
			status=STATUS_IN_PROGRESS,
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			pickup_address='Saddar, Karachi',
			dropoff_latitude=DROPOFF[0],
			dropoff_longitude=DROPOFF[1],
			current_latitude=Decimal('24.865000'),
			current_longitude=Decimal('67.005000'),
		)

		result = self.pipeline.trigger(self.passenger, {'severity': 'critical'})

		self.assertEqual(result.alert.ride_id, ride.id)
		self.assertEqual(result.alert.severity, 'critical')
		self.assertEqual(result.as_dict()['location']['lat'], 24.865)

	def test_driver_sos_skips_contacts(self):
		driver = make_driver('driver_one')

		result = self.pipeline.trigger(driver, {'latitude': 24.86, 'longitude': 67.0})

		self.assertEqual(result.contacts, [])
		self.assertEqual(self.sms.sent, [])
		self.assertTrue(result.admin_notified)

	def test_no_location_anywhere(self):
		with self.assertRaises(LocationUnavailableError):
			self.pipeline.trigger(self.passenger, {})

		self.assertFalse(SOSAlert.objects.exists())

	def test_explicit_ride_must_be_the_users(self):
		stranger = make_passenger('stranger')
		ride = Ride.objects.create(
			passenger=stranger,
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			dropoff_latitude=DROPOFF[0],
			dropoff_longitude=DROPOFF[1],
		)

		with self.assertRaises(NotRideParticipantError):
			self.pipeline.trigger(self.passenger, {'ride_id': ride.id, 'latitude': 24.86, 'longitude': 67.0})
