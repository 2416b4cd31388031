from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from common.testing import FAR_AWAY, NEARBY, PICKUP, make_driver, make_passenger
from realtime.geo import DriverIndex, STATE_BUSY, STATE_OFFLINE
from rides.constants import OFFER_ACCEPTED, OFFER_EXPIRED, OFFER_PENDING, PRIORITY_DISTANCE, PRIORITY_RATING
from rides.models import Ride, RideOffer
from .offer_builder import build_offers_for_ride, expire_pending_offers, has_live_offers
from .scoring import (
	REASON_NO_DRIVERS,
	REASON_NO_VEHICLE_MATCH,
	MatchingEngine,
	ScoredCandidate,
	combine_scores,
	distance_score,
	rating_score,
	response_score,
)


def make_ride(passenger, **kwargs):
	fields = dict(
		passenger=passenger,
		pickup_latitude=PICKUP[0],
		pickup_longitude=PICKUP[1],
		dropoff_latitude=24.8700,
		dropoff_longitude=67.0100,
		fare_estimated=Decimal('264'),
	)
	fields.update(kwargs)
	return Ride.objects.create(**fields)


class ScoringTests(TestCase):
	def test_sub_scores(self):
		self.assertEqual(distance_score(1), 80.0)
		self.assertEqual(distance_score(6), 0.0)
		self.assertEqual(rating_score(Decimal('4.5')), 90.0)
		self.assertEqual(response_score(None), 70.0)
		self.assertEqual(response_score(5000), 95.0)

	def test_priority_pulls_toward_its_sub_score(self):
		breakdown = {'distance': 100.0, 'rating': 0.0, 'acceptance': 50.0, 'completion': 50.0, 'response': 70.0}
		speed = combine_scores(breakdown, 'speed')

		self.assertGreater(combine_scores(breakdown, PRIORITY_DISTANCE), speed)
		self.assertLess(combine_scores(breakdown, PRIORITY_RATING), speed)


class MatchingEngineTests(TestCase):
	def setUp(self):
		self.index = DriverIndex()
		self.engine = MatchingEngine(self.index)
		self.passenger = make_passenger('passenger')

	def test_closest_best_rated_driver_first(self):
		near = make_driver('near', self.index, location=NEARBY, rating=Decimal('4.90'))
		make_driver('further', self.index, location=(24.8800, 67.0200), rating=Decimal('4.00'))

		result = self.engine.find_candidates(*PICKUP, vehicle_class='car')

		self.assertTrue(result.found)
		self.assertEqual(result.candidates[0].driver_id, near.id)
		self.assertIsNone(result.reason)

	def test_short_list_is_capped(self):
		for number in range(5):
			make_driver('driver%d' % number, self.index, location=(NEARBY[0] + number * 0.001, NEARBY[1]))

		result = self.engine.find_candidates(*PICKUP)

		self.assertEqual(len(result.candidates), 3)
		self.assertEqual(result.nearby_count, 5)

	def test_no_drivers_in_radius(self):
		make_driver('far', self.index, location=FAR_AWAY)

		result = self.engine.find_candidates(*PICKUP)

		self.assertFalse(result.found)
		self.assertEqual(result.reason, REASON_NO_DRIVERS)

	def test_no_vehicle_match(self):
		make_driver('biker', self.index, vehicle_class='bike')

		result = self.engine.find_candidates(*PICKUP, vehicle_class='car')

		self.assertEqual(result.reason, REASON_NO_VEHICLE_MATCH)
		self.assertEqual(result.nearby_count, 1)

	def test_unavailable_and_unapproved_drivers_are_skipped(self):
		make_driver('busy', self.index, state=STATE_BUSY)
		make_driver('offline', self.index, state=STATE_OFFLINE)
		make_driver('pending_review', self.index, approved=False)

		result = self.engine.find_candidates(*PICKUP)

		self.assertEqual(result.candidates, [])
		self.assertEqual(result.reason, REASON_NO_DRIVERS)

	def test_excluded_drivers_are_removed_first(self):
		first = make_driver('first', self.index)
		second = make_driver('second', self.index, location=(NEARBY[0] + 0.002, NEARBY[1]))

		result = self.engine.find_candidates(*PICKUP, exclude={first.id})

		self.assertEqual([c.driver_id for c in result.candidates], [second.id])

	def test_matching_driver_behind_a_full_page_of_other_classes(self):
		for number in range(50):
			make_driver('biker%d' % number, self.index, location=(PICKUP[0] + number * 0.0001, PICKUP[1]), vehicle_class='bike')
		car = make_driver('car', self.index, location=(PICKUP[0] + 0.02, PICKUP[1]))

		result = self.engine.find_candidates(*PICKUP, vehicle_class='car')

		self.assertTrue(result.found)
		self.assertEqual([c.driver_id for c in result.candidates], [car.id])

	def test_free_driver_behind_a_full_page_of_excluded_drivers(self):
		offered = [
			make_driver('offered%d' % number, self.index, location=(PICKUP[0] + number * 0.0001, PICKUP[1])).id
			for number in range(50)
		]
		free = make_driver('free', self.index, location=(PICKUP[0] + 0.02, PICKUP[1]))

		result = self.engine.find_candidates(*PICKUP, vehicle_class='car', exclude=offered)

		self.assertEqual([c.driver_id for c in result.candidates], [free.id])

	def test_acceptance_history_feeds_the_score(self):
		driver = make_driver('veteran', self.index)
		now = timezone.now()
		for number in range(4):
			ride = make_ride(self.passenger)
			RideOffer.objects.create(
				ride=ride,
				driver=driver,
				order=0,
				status=OFFER_ACCEPTED if number else OFFER_EXPIRED,
				sent_at=now - timedelta(days=1),
				responded_at=now - timedelta(days=1) + timedelta(seconds=10),
				expires_at=now - timedelta(days=1) + timedelta(seconds=15),
			)

		stats = self.engine.driver_stats([driver.id], now=now)[driver.id]

		self.assertEqual(stats.acceptance, 75.0)
		self.assertEqual(stats.response, 90.0)
		self.assertEqual(stats.completion, 50.0)


class OfferBuilderTests(TestCase):
	def setUp(self):
		self.passenger = make_passenger('passenger')
		self.driver_one = make_driver('driver_one')
		self.driver_two = make_driver('driver_two')
		self.ride = make_ride(self.passenger)
		self.now = timezone.now()
		self.candidates = [
			ScoredCandidate(driver_id=self.driver_one.id, distance_km=0.5, eta_seconds=60, score=90.0),
			ScoredCandidate(driver_id=self.driver_two.id, distance_km=1.5, eta_seconds=180, score=70.0),
		]

	def test_offers_expire_after_ttl(self):
		offers = build_offers_for_ride(self.ride, self.candidates, now=self.now)

		self.assertEqual([offer.order for offer in offers], [0, 1])
		self.assertEqual(offers[0].expires_at, self.now + timedelta(seconds=15))
		self.assertTrue(has_live_offers(self.ride, self.now + timedelta(seconds=14)))
		self.assertFalse(has_live_offers(self.ride, self.now + timedelta(seconds=15)))

	def test_expire_pending_offers_skips_the_winner(self):
		build_offers_for_ride(self.ride, self.candidates, now=self.now)

		closed = expire_pending_offers(self.ride, now=self.now, exclude_driver_id=self.driver_one.id)

		self.assertEqual(closed, [self.driver_two.id])
		self.assertEqual(RideOffer.objects.get(driver=self.driver_one).status, OFFER_PENDING)
		self.assertEqual(RideOffer.objects.get(driver=self.driver_two).status, OFFER_EXPIRED)
