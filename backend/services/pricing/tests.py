from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from django.test import SimpleTestCase

from rides.constants import (
	CANCELLED_BY_ADMIN, CANCELLED_BY_DRIVER, CANCELLED_BY_PASSENGER,
	STATUS_ACCEPTED, STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_PENDING, STATUS_SCHEDULED,
)
from .cancellation import (
	REASON_NOT_ALLOWED,
	REASON_WINDOW_EXCEEDED,
	CancellationContext,
	evaluate_cancellation,
	round_to_ten,
	surge_multiplier,
)
from .fares import calculate_fare, fare_for_route, round_currency

KARACHI = ZoneInfo('Asia/Karachi')


def karachi(*args):
	return datetime(*args, tzinfo=KARACHI)


class FareCalculationTests(SimpleTestCase):
	def test_short_city_trip(self):
		fare = fare_for_route(1300, 1500)

		self.assertEqual(fare.base, Decimal('100'))
		self.assertEqual(fare.distance_fare, Decimal('39'))
		self.assertEqual(fare.time_fare, Decimal('125'))
		self.assertEqual(fare.total, Decimal('264'))
		self.assertEqual(fare.currency, 'PKR')

	def test_same_inputs_give_same_fare(self):
		self.assertEqual(calculate_fare(7.3, 18, '1.5'), calculate_fare(7.3, 18, '1.5'))

	def test_surge_multiplies_the_subtotal(self):
		fare = calculate_fare(1.3, 25, Decimal('1.5'))

		self.assertEqual(fare.subtotal, Decimal('264'))
		self.assertEqual(fare.total, Decimal('396'))

	def test_half_units_round_away_from_zero(self):
		self.assertEqual(round_currency(Decimal('101.5')), Decimal('102'))
		self.assertEqual(round_currency(Decimal('101.49')), Decimal('101'))
		self.assertEqual(calculate_fare(0.05, 0).total, Decimal('102'))

	def test_as_dict_uses_whole_units(self):
		data = fare_for_route(1300, 1500).as_dict()

		self.assertEqual(data['total'], 264)
		self.assertEqual(data['surge'], 1.0)


class SurgeMultiplierTests(SimpleTestCase):
	def test_weekday_peak(self):
		# 2026-10-19 is a Monday
		self.assertEqual(surge_multiplier(karachi(2026, 10, 19, 8, 15)), Decimal('1.5'))
		self.assertEqual(surge_multiplier(karachi(2026, 10, 21, 18, 0)), Decimal('1.5'))

	def test_weekday_off_peak(self):
		self.assertEqual(surge_multiplier(karachi(2026, 10, 19, 12, 0)), Decimal('1.0'))
		self.assertEqual(surge_multiplier(karachi(2026, 10, 23, 19, 59)), Decimal('1.5'))

	def test_weekend_window(self):
		self.assertEqual(surge_multiplier(karachi(2026, 10, 23, 20, 0)), Decimal('2.0'))
		self.assertEqual(surge_multiplier(karachi(2026, 10, 24, 3, 0)), Decimal('2.0'))
		self.assertEqual(surge_multiplier(karachi(2026, 10, 25, 20, 59)), Decimal('2.0'))
		self.assertEqual(surge_multiplier(karachi(2026, 10, 25, 21, 0)), Decimal('1.0'))

	def test_utc_input_is_read_in_local_time(self):
		# 03:15 UTC is 08:15 in Karachi
		moment = datetime(2026, 10, 19, 3, 15, tzinfo=ZoneInfo('UTC'))
		self.assertEqual(surge_multiplier(moment), Decimal('1.5'))


class CancellationPolicyTests(SimpleTestCase):
	def setUp(self):
		self.requested_at = karachi(2026, 10, 19, 12, 0)
		self.joined_long_ago = self.requested_at - timedelta(days=90)

	def context(self, status=STATUS_ACCEPTED, canceller=CANCELLED_BY_PASSENGER, **kwargs):
		kwargs.setdefault('passenger_joined_at', self.joined_long_ago)
		return CancellationContext(
			status=status,
			canceller=canceller,
			requested_at=self.requested_at,
			**kwargs
		)

	def test_passenger_peak_hour_standard_fee(self):
		requested_at = karachi(2026, 10, 19, 8, 15)
		ctx = CancellationContext(
			status=STATUS_ACCEPTED,
			canceller=CANCELLED_BY_PASSENGER,
			requested_at=requested_at,
			passenger_joined_at=requested_at - timedelta(days=30),
		)

		decision = evaluate_cancellation(ctx, requested_at + timedelta(minutes=3))

		self.assertTrue(decision.allowed)
		self.assertEqual(decision.category, 'standard')
		self.assertEqual(decision.surge, Decimal('1.5'))
		self.assertEqual(decision.fee, Decimal('150'))

	def test_immediate_cancellation_is_free(self):
		decision = evaluate_cancellation(self.context(status=STATUS_PENDING), self.requested_at + timedelta(seconds=20))

		self.assertTrue(decision.allowed)
		self.assertEqual(decision.category, 'immediate')
		self.assertEqual(decision.fee, Decimal('0'))

	def test_early_fee_off_peak(self):
		decision = evaluate_cancellation(self.context(), self.requested_at + timedelta(seconds=90))

		self.assertEqual(decision.category, 'early')
		self.assertEqual(decision.fee, Decimal('50'))

	def test_subscription_halves_the_fee(self):
		decision = evaluate_cancellation(
			self.context(subscription_active=True), self.requested_at + timedelta(minutes=3)
		)

		self.assertEqual(decision.fee, Decimal('50'))
		self.assertIn('subscription', decision.discounts)

	def test_first_week_discount_then_rounded_to_ten(self):
		ctx = self.context(passenger_joined_at=self.requested_at - timedelta(days=2))

		decision = evaluate_cancellation(ctx, self.requested_at + timedelta(minutes=4))

		# 100 - 25 = 75, rounded to the nearest 10
		self.assertEqual(decision.fee, Decimal('80'))

	def test_well_rated_driver_discount(self):
		ctx = self.context(canceller=CANCELLED_BY_DRIVER, driver_rating=Decimal('4.80'))

		decision = evaluate_cancellation(ctx, self.requested_at + timedelta(minutes=3))

		self.assertEqual(decision.fee, Decimal('30'))

	def test_driver_late_fee(self):
		ctx = self.context(canceller=CANCELLED_BY_DRIVER, driver_rating=Decimal('4.20'))

		decision = evaluate_cancellation(ctx, self.requested_at + timedelta(minutes=20))

		self.assertEqual(decision.category, 'late')
		self.assertEqual(decision.fee, Decimal('100'))

	def test_passenger_window_exceeded(self):
		decision = evaluate_cancellation(self.context(), self.requested_at + timedelta(minutes=11))

		self.assertFalse(decision.allowed)
		self.assertEqual(decision.reason, REASON_WINDOW_EXCEEDED)
		self.assertIn('accepted', decision.message)

	def test_in_progress_cannot_be_cancelled(self):
		decision = evaluate_cancellation(self.context(status=STATUS_IN_PROGRESS), self.requested_at)

		self.assertFalse(decision.allowed)
		self.assertEqual(decision.reason, REASON_NOT_ALLOWED)

	def test_terminal_rides_cannot_be_cancelled(self):
		decision = evaluate_cancellation(self.context(status=STATUS_COMPLETED), self.requested_at)

		self.assertFalse(decision.allowed)

	def test_driver_cannot_cancel_unassigned_ride(self):
		decision = evaluate_cancellation(
			self.context(status=STATUS_PENDING, canceller=CANCELLED_BY_DRIVER), self.requested_at
		)

		self.assertFalse(decision.allowed)

	def test_scheduled_ride_cancels_free_for_passenger_only(self):
		passenger = evaluate_cancellation(
			self.context(status=STATUS_SCHEDULED), self.requested_at + timedelta(hours=3)
		)
		driver = evaluate_cancellation(
			self.context(status=STATUS_SCHEDULED, canceller=CANCELLED_BY_DRIVER), self.requested_at
		)

		self.assertTrue(passenger.allowed)
		self.assertEqual(passenger.fee, Decimal('0'))
		self.assertFalse(driver.allowed)

	def test_admin_cancels_without_fee(self):
		decision = evaluate_cancellation(
			self.context(status=STATUS_ACCEPTED, canceller=CANCELLED_BY_ADMIN),
			self.requested_at + timedelta(minutes=30),
		)

		self.assertTrue(decision.allowed)
		self.assertEqual(decision.fee, Decimal('0'))

	def test_round_to_ten(self):
		self.assertEqual(round_to_ten(Decimal('75')), Decimal('80'))
		self.assertEqual(round_to_ten(Decimal('74')), Decimal('70'))
		self.assertEqual(round_to_ten(Decimal('0')), Decimal('0'))
