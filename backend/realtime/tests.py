import threading
from datetime import timedelta
from unittest.mock import Mock, patch

from asgiref.sync import async_to_sync
from channels.layers import InMemoryChannelLayer, get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase
from django.utils import timezone

from accounts.models import User
from .bus import RealtimeBus, build_message, user_group
from .consumers import BaseConsumer, DriverConsumer, RideConsumer
from .geo import DriverIndex, STATE_AVAILABLE, STATE_BUSY, STATE_OFFLINE


class DriverIndexTests(SimpleTestCase):
	def setUp(self):
		self.index = DriverIndex()
		self.now = timezone.now()

	def add(self, driver_id, lat, lon, vehicle_class='car', state=STATE_AVAILABLE, approved=True):
		self.index.register(driver_id, vehicle_class, approved)
		self.index.update_location(driver_id, lat, lon, self.now)
		self.index.set_state(driver_id, state)

	def test_unknown_driver_is_offline(self):
		self.assertEqual(self.index.get_state(42), STATE_OFFLINE)
		self.assertIsNone(self.index.get(42))

	def test_older_location_reports_are_dropped(self):
		self.add(1, 24.8607, 67.0011)

		accepted = self.index.update_location(1, 25.0, 67.5, self.now - timedelta(seconds=1))

		self.assertFalse(accepted)
		self.assertEqual(self.index.get(1).latitude, 24.8607)

	def test_query_orders_by_distance_then_id(self):
		self.add(3, 24.8640, 67.0040)
		self.add(2, 24.8640, 67.0040)
		self.add(1, 24.8800, 67.0200)

		found = self.index.query(24.8607, 67.0011, 5)

		self.assertEqual([driver.driver_id for driver in found], [2, 3, 1])
		self.assertLess(found[0].distance_km, found[2].distance_km)

	def test_query_filters(self):
		self.add(1, 24.8640, 67.0040, vehicle_class='bike')
		self.add(2, 24.8640, 67.0040, state=STATE_BUSY)
		self.add(3, 24.8640, 67.0040, approved=False)
		self.add(4, 24.9600, 67.1500)
		self.add(5, 24.8650, 67.0050)

		self.assertEqual([d.driver_id for d in self.index.query(24.8607, 67.0011, 5, vehicle_class='car')], [5])
		self.assertEqual([d.driver_id for d in self.index.query(24.8607, 67.0011, 5)], [1, 5])

	def test_query_across_the_antimeridian(self):
		self.add(1, 0.0, 179.99)

		found = self.index.query(0.0, -179.99, 5)

		self.assertEqual([driver.driver_id for driver in found], [1])

	def test_result_cap(self):
		index = DriverIndex(result_cap=2)
		for driver_id in range(1, 5):
			index.register(driver_id, 'car', True)
			index.update_location(driver_id, 24.8640, 67.0040, self.now)
			index.set_state(driver_id, STATE_AVAILABLE)

		self.assertEqual(len(index.query(24.8607, 67.0011, 5)), 2)

	def test_filters_run_before_the_cap(self):
		index = DriverIndex(result_cap=2)
		for driver_id in range(1, 5):
			index.register(driver_id, 'bike', True)
			index.update_location(driver_id, 24.8640, 67.0040, self.now)
			index.set_state(driver_id, STATE_AVAILABLE)
		index.register(5, 'car', True)
		index.update_location(5, 24.8800, 67.0100, self.now)
		index.set_state(5, STATE_AVAILABLE)

		self.assertEqual([d.driver_id for d in index.query(24.8607, 67.0011, 5, vehicle_class='car')], [5])
		self.assertEqual([d.driver_id for d in index.query(24.8607, 67.0011, 5, exclude=[1, 2, 3])], [4, 5])

	def test_unknown_state_is_refused(self):
		with self.assertRaises(ValueError):
			self.index.set_state(1, 'on_break')

	def test_only_one_thread_wins_the_driver(self):
		self.add(1, 24.8640, 67.0040)
		barrier = threading.Barrier(8)
		wins = []

		def grab():
			barrier.wait()
			wins.append(self.index.compare_and_set_state(1, STATE_AVAILABLE, STATE_BUSY))

		threads = [threading.Thread(target=grab) for _ in range(8)]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join()

		self.assertEqual(wins.count(True), 1)
		self.assertEqual(self.index.get_state(1), STATE_BUSY)


class RealtimeBusTests(SimpleTestCase):
	def setUp(self):
		self.bus = RealtimeBus(channel_layer=InMemoryChannelLayer())

	def test_events_arrive_in_publish_order(self):
		with self.bus.subscribe(7) as subscription:
			for sequence in range(3):
				self.assertTrue(self.bus.publish(7, 'ride:driver_location', {'sequence': sequence}))

			received = [subscription.receive(timeout=1) for _ in range(3)]

		self.assertEqual([message['payload']['sequence'] for message in received], [0, 1, 2])
		self.assertEqual(received[0]['event'], 'ride:driver_location')

	def test_other_users_do_not_see_the_event(self):
		with self.bus.subscribe(8) as subscription:
			self.bus.publish(7, 'ride:accepted', {'ride_id': 1})

			self.assertIsNone(subscription.receive(timeout=0.05))

	def test_broadcast_reaches_subscribers(self):
		with self.bus.subscribe(9) as subscription:
			self.bus.broadcast('system:notice', {'text': 'maintenance'})

			self.assertEqual(subscription.receive(timeout=1)['event'], 'system:notice')

	def test_publish_failure_is_reported_not_raised(self):
		class BrokenBus(RealtimeBus):
			def _group_send(self, group, message):
				raise ConnectionError('redis down')

		self.assertFalse(BrokenBus().publish(7, 'ride:accepted', {}))
		self.assertFalse(self.bus.publish(None, 'ride:accepted', {}))


class ConsumerTests(SimpleTestCase):
	def communicator(self, consumer, user, path='/ws/realtime/'):
		communicator = WebsocketCommunicator(consumer.as_asgi(), path)
		communicator.scope['user'] = user
		return communicator

	def test_anonymous_socket_is_closed(self):
		async def run():
			communicator = self.communicator(BaseConsumer, AnonymousUser())
			return await communicator.connect()

		connected, code = async_to_sync(run)()

		self.assertFalse(connected)
		self.assertEqual(code, 4401)

	def test_driver_endpoint_refuses_passengers(self):
		passenger = User(id=501, username='passenger', role=User.ROLE_PASSENGER)

		async def run():
			communicator = self.communicator(DriverConsumer, passenger, '/ws/driver/')
			return await communicator.connect()

		connected, code = async_to_sync(run)()

		self.assertFalse(connected)
		self.assertEqual(code, 4403)

	def test_bus_events_reach_the_socket(self):
		passenger = User(id=502, username='passenger', role=User.ROLE_PASSENGER)

		async def run():
			communicator = self.communicator(BaseConsumer, passenger)
			connected, _ = await communicator.connect()
			welcome = await communicator.receive_json_from()
			await get_channel_layer().group_send(
				user_group(502), build_message('ride:accepted', {'ride_id': 11})
			)
			event = await communicator.receive_json_from()
			await communicator.send_json_to({'type': 'bogus'})
			error = await communicator.receive_json_from()
			await communicator.disconnect()
			return connected, welcome, event, error

		connected, welcome, event, error = async_to_sync(run)()

		self.assertTrue(connected)
		self.assertEqual(welcome['type'], 'connection_established')
		self.assertEqual(event['type'], 'ride:accepted')
		self.assertEqual(event['payload'], {'ride_id': 11})
		self.assertEqual(error['type'], 'error')

	def test_chat_and_typing_are_handed_to_the_orchestrator(self):
		passenger = User(id=503, username='passenger', role=User.ROLE_PASSENGER)
		orchestrator = Mock()
		orchestrator.send_chat_message.return_value = True

		async def run():
			communicator = self.communicator(RideConsumer, passenger, '/ws/ride/')
			await communicator.connect()
			await communicator.receive_json_from()
			await communicator.send_json_to({'type': 'chat_message', 'ride_id': 7, 'message': 'On my way'})
			reply = await communicator.receive_json_from()
			await communicator.send_json_to({'type': 'typing', 'ride_id': 7, 'is_typing': False})
			await communicator.receive_nothing(timeout=0.2)
			await communicator.disconnect()
			return reply

		with patch('realtime.consumers.ride_consumer.get_orchestrator', return_value=orchestrator):
			reply = async_to_sync(run)()

		self.assertEqual(reply, {'type': 'chat_sent', 'ride_id': 7, 'delivered': True})
		orchestrator.send_chat_message.assert_called_once_with(passenger, 7, 'On my way', 'text')
		orchestrator.send_typing.assert_called_once_with(passenger, 7, False)
