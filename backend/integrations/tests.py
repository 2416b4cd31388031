import hashlib
from decimal import Decimal
from unittest.mock import Mock, patch

import requests
from django.test import SimpleTestCase, override_settings

from .exceptions import ExternalServiceError, IntegrationNotConfigured
from .http import call_with_retry, request_json
from .images import CloudinaryImageStore, PLACEHOLDER_PHOTO_URL, get_image_store
from .maps import GoogleGeocoder, GoogleRouter, UnconfiguredMaps, get_router, haversine_route
from .payments import (
	CashGateway,
	EasypaisaGateway,
	JazzcashGateway,
	StripeGateway,
	UnconfiguredGateway,
	build_payment_gateways,
	get_payment_gateway,
)
from .sms import TwilioSMSGateway, UnconfiguredSMSGateway, get_sms_gateway


def json_response(body, status_code=200):
	response = Mock(status_code=status_code)
	response.json.return_value = body
	return response


DIRECTIONS_OK = {
	'status': 'OK',
	'routes': [{
		'overview_polyline': {'points': 'a~l~Fjk~uOwHJy@P'},
		'legs': [{'distance': {'value': 1300}, 'duration': {'value': 1500}}],
	}],
}


class RequestJsonTests(SimpleTestCase):
	@patch('integrations.http.requests.request')
	def test_timeouts_are_retryable(self, mock_request):
		mock_request.side_effect = requests.Timeout()

		with self.assertRaises(ExternalServiceError) as ctx:
			request_json('google_directions', 'GET', 'https://maps.example.test')

		self.assertTrue(ctx.exception.retryable)
		self.assertEqual(ctx.exception.service, 'google_directions')

	@patch('integrations.http.requests.request')
	def test_client_errors_are_terminal(self, mock_request):
		mock_request.return_value = json_response({}, status_code=403)

		with self.assertRaises(ExternalServiceError) as ctx:
			request_json('twilio', 'POST', 'https://api.example.test')

		self.assertFalse(ctx.exception.retryable)
		self.assertEqual(ctx.exception.status_code, 502)

	@patch('integrations.http.requests.request')
	def test_default_timeout_is_applied(self, mock_request):
		mock_request.return_value = json_response({'ok': True})

		request_json('stripe', 'GET', 'https://api.example.test')

		self.assertEqual(mock_request.call_args.kwargs['timeout'], 10.0)

	def test_retry_only_once(self):
		calls = []

		def flaky():
			calls.append(1)
			raise ExternalServiceError('busy', service='maps', retryable=True)

		with self.assertRaises(ExternalServiceError):
			call_with_retry(flaky, 'maps')

		self.assertEqual(len(calls), 2)


class MapsTests(SimpleTestCase):
	@patch('integrations.http.requests.request')
	def test_router_retries_a_timeout(self, mock_request):
		mock_request.side_effect = [requests.Timeout(), json_response(DIRECTIONS_OK)]

		route = GoogleRouter('key').route((24.8607, 67.0011), (24.8700, 67.0100))

		self.assertEqual(mock_request.call_count, 2)
		self.assertEqual(route.distance_m, 1300)
		self.assertEqual(route.duration_s, 1500)
		self.assertEqual(route.polyline, 'a~l~Fjk~uOwHJy@P')
		self.assertFalse(route.is_estimate)

	@patch('integrations.http.requests.request')
	def test_zero_results_is_not_retried(self, mock_request):
		mock_request.return_value = json_response({'status': 'ZERO_RESULTS', 'results': []})

		with self.assertRaises(ExternalServiceError):
			GoogleGeocoder('key').geocode('Atlantis')

		self.assertEqual(mock_request.call_count, 1)

	@patch('integrations.http.requests.request')
	def test_geocode(self, mock_request):
		mock_request.return_value = json_response({
			'status': 'OK',
			'results': [{
				'formatted_address': 'Saddar, Karachi, Pakistan',
				'geometry': {'location': {'lat': 24.8607, 'lng': 67.0011}},
			}],
		})

		result = GoogleGeocoder('key').geocode('Saddar')

		self.assertEqual((result.latitude, result.longitude), (24.8607, 67.0011))
		self.assertEqual(result.formatted_address, 'Saddar, Karachi, Pakistan')

	def test_haversine_route_is_an_estimate(self):
		route = haversine_route((24.8607, 67.0011), (24.8607, 67.0011))

		self.assertEqual(route.distance_m, 0)
		self.assertIsNone(route.polyline)
		self.assertTrue(route.is_estimate)

	def test_haversine_route_uses_city_speed(self):
		route = haversine_route((0.0, 0.0), (0.0, 0.1), speed_kmh=30)

		# 0.1 degree of longitude on the equator is about 11.1 km
		self.assertAlmostEqual(route.distance_m, 11119, delta=2)
		self.assertEqual(route.duration_s, round(route.distance_m / 1000 / 30 * 3600))

	def test_missing_key_means_unconfigured(self):
		router = get_router()

		self.assertIsInstance(router, UnconfiguredMaps)
		with self.assertRaises(IntegrationNotConfigured) as ctx:
			router.route((0, 0), (0, 1))
		self.assertEqual(ctx.exception.status_code, 503)


class PaymentGatewayTests(SimpleTestCase):
	def test_cash_completes_immediately(self):
		result = CashGateway().charge(Decimal('264'), 'PKR', {'ride_id': 12})

		self.assertEqual(result.status, 'completed')
		self.assertTrue(result.transaction_id.startswith('CASH-12-'))

	def test_easypaisa_signs_the_order(self):
		gateway = EasypaisaGateway('store-1', 'hash-key', 'https://easypay.example.test/', 'https://app.example.test/cb')

		result = gateway.charge(Decimal('264'), 'PKR', {'ride_id': 12})

		self.assertEqual(result.status, 'pending')
		self.assertTrue(result.transaction_id.startswith('EP-12-'))
		expected = hashlib.sha256(
			('hash-key' + 'store-1' + result.transaction_id + '264' + 'MA').encode('utf-8')
		).hexdigest()
		self.assertIn('hash=' + expected, result.details['paymentUrl'])
		self.assertTrue(result.details['paymentUrl'].startswith('https://easypay.example.test/easypay-portal?'))

	def test_jazzcash_amount_in_paisa_and_hash(self):
		gateway = JazzcashGateway('MC123', 'secret', 'salt', 'https://jazzcash.example.test')

		result = gateway.charge(Decimal('264'), 'PKR', {'ride_id': 12})

		fields = result.details['formFields']
		self.assertEqual(fields['pp_Amount'], '26400')
		self.assertEqual(fields['pp_BillReference'], 'ride12')
		self.assertEqual(len(fields['pp_SecureHash']), 64)
		self.assertEqual(fields['pp_SecureHash'], fields['pp_SecureHash'].upper())

	def test_jazzcash_hash_ignores_empty_values(self):
		gateway = JazzcashGateway('MC123', 'secret', 'salt', 'https://jazzcash.example.test')
		payload = {'pp_Amount': '26400', 'pp_TxnRefNo': 'JC-1'}

		self.assertEqual(
			gateway.secure_hash(payload),
			gateway.secure_hash(dict(payload, pp_ReturnURL='', pp_SecureHash='stale'))
		)
		self.assertNotEqual(gateway.secure_hash(payload), gateway.secure_hash(dict(payload, pp_Amount='100')))

	@patch('integrations.http.requests.request')
	def test_stripe_charge_in_minor_units(self, mock_request):
		mock_request.return_value = json_response({'id': 'pi_123', 'status': 'succeeded', 'client_secret': 'cs'})

		result = StripeGateway('sk_test').charge(Decimal('264'), 'PKR', {'ride_id': 12})

		self.assertEqual(result.transaction_id, 'pi_123')
		self.assertEqual(result.status, 'completed')
		sent = mock_request.call_args.kwargs
		self.assertEqual(sent['data']['amount'], 26400)
		self.assertEqual(sent['data']['currency'], 'pkr')
		self.assertEqual(sent['auth'], ('sk_test', ''))

	@patch('integrations.http.requests.request')
	def test_stripe_charge_is_not_retried(self, mock_request):
		mock_request.side_effect = requests.ConnectionError()

		with self.assertRaises(ExternalServiceError):
			StripeGateway('sk_test').charge(Decimal('264'), 'PKR')

		self.assertEqual(mock_request.call_count, 1)

	def test_unconfigured_methods(self):
		gateways = build_payment_gateways()

		self.assertIsInstance(gateways['cash'], CashGateway)
		self.assertIsInstance(gateways['card'], UnconfiguredGateway)
		with self.assertRaises(IntegrationNotConfigured):
			gateways['jazzcash'].charge(Decimal('264'), 'PKR')
		with self.assertRaises(ExternalServiceError):
			get_payment_gateway('bitcoin', gateways)

	@override_settings(STRIPE={'SECRET_KEY': 'sk_test'})
	def test_configured_card_gateway(self):
		self.assertIsInstance(build_payment_gateways()['card'], StripeGateway)


class SMSAndImageTests(SimpleTestCase):
	@patch('integrations.http.requests.request')
	def test_twilio_send(self, mock_request):
		mock_request.return_value = json_response({'sid': 'SM1', 'status': 'queued'})

		result = TwilioSMSGateway('AC1', 'token', '+15550000000').send('+923330000001', 'Help')

		self.assertEqual(result.sid, 'SM1')
		sent = mock_request.call_args.kwargs
		self.assertEqual(sent['data']['To'], '+923330000001')
		self.assertEqual(sent['auth'], ('AC1', 'token'))

	def test_sms_without_credentials_fails(self):
		gateway = get_sms_gateway()

		self.assertIsInstance(gateway, UnconfiguredSMSGateway)
		with self.assertRaises(IntegrationNotConfigured):
			gateway.send('+923330000001', 'Help')

	def test_cloudinary_signature(self):
		store = CloudinaryImageStore('demo', 'key', 'secret')

		signature = store.sign({'timestamp': 1700000000, 'folder': 'ride-verification'})

		expected = hashlib.sha1(b'folder=ride-verification&timestamp=1700000000secret').hexdigest()
		self.assertEqual(signature, expected)

	def test_placeholder_without_credentials(self):
		self.assertEqual(get_image_store().upload(None, folder='ride-verification'), PLACEHOLDER_PHOTO_URL)
