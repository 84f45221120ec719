from django.core.management import CommandError, call_command
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework import status
from unittest import mock
from PIL import Image
from .exceptions import CountryNotFound, RefreshInProgress, SourceUnavailable, StorageFailure
from .imaging import PLACEHOLDER, SUMMARY_KEY, ensure_summary_image, generate_summary_image, summary_lines
from .models import NO_CURRENCY, Country, RefreshStatus
from .persistence import delete_country, upsert_countries
from .reconcile import normalize_country, reconcile_countries
from .selectors import top_countries
from . import selectors, services, sources
import datetime
import io
import os
import requests
import tempfile


class FakeResp:
	def __init__(self, json_data, status=200):
		self._json = json_data
		self.status_code = status

	def json(self):
		if isinstance(self._json, Exception):
			raise self._json
		return self._json

	def raise_for_status(self):
		if not (200 <= self.status_code < 300):
			raise requests.exceptions.HTTPError(f'{self.status_code} error')


class FixedMultiplier:
	"""Stands in for random.Random: always answers the same multiplier."""

	def __init__(self, value=1500):
		self.value = value
		self.calls = []

	def randint(self, a, b):
		self.calls.append((a, b))
		return self.value


MOCK_COUNTRIES = [
	{
		'name': 'Mockland',
		'capital': 'Mock City',
		'region': 'Mock Region',
		'population': 500,
		'flag': 'http://example.com/flag.png',
		'currencies': [{'code': 'USD'}]
	},
	{
		'name': 'Nigeria',
		'capital': 'Abuja',
		'region': 'Africa',
		'population': 2000000,
		'flag': 'http://example.com/ng.png',
		'currencies': [{'code': 'ngn'}]
	},
	{
		'name': 'Antarctica',
		'region': 'Polar',
		'population': 1000,
	},
	{
		'name': 'Testland',
		'population': 1000000,
		'currencies': [{'code': 'abc'}]
	},
	{
		'capital': 'Nowhere',
		'population': 10,
	},
]

MOCK_RATES = {'rates': {'USD': 1.0, 'NGN': 1500.0, 'EUR': 0.9}}


def fake_get(countries=MOCK_COUNTRIES, rates=MOCK_RATES):
	def side_effect(url, timeout=None, headers=None):
		if 'restcountries' in url:
			return FakeResp(countries)
		return FakeResp(rates)
	return side_effect


class TempImagePathMixin:
	"""Points SUMMARY_IMAGE_PATH at a throwaway directory."""

	def setUp(self):
		super().setUp()
		tmp = tempfile.TemporaryDirectory()
		self.addCleanup(tmp.cleanup)
		self.image_path = os.path.join(tmp.name, 'cache', 'summary.png')
		override = override_settings(SUMMARY_IMAGE_PATH=self.image_path)
		override.enable()
		self.addCleanup(override.disable)

	def image_summary(self):
		with Image.open(self.image_path) as img:
			return img.size, img.text[SUMMARY_KEY]


class CountriesAPITestCase(TempImagePathMixin, TestCase):
	"""Tests for the countries API endpoints.

	Covered endpoints:
	- POST /countries/refresh
	- GET  /countries
	- GET  /countries/<name>
	- DELETE /countries/<name>
	- GET /status
	- GET /countries/image
	"""

	def setUp(self):
		super().setUp()
		self.client = APIClient()
		now = timezone.now()
		# create some countries for list/get/delete/status
		Country.objects.create(
			name="Testland",
			capital="Testville",
			region="Test Region",
			population=1000,
			currency_code="TST",
			exchange_rate=2.0,
			estimated_gdp=500.0,
			flag_url="http://example.com/flag.png",
			last_refreshed_at=now,
		)

		Country.objects.create(
			name="Samplestan",
			capital="Sample City",
			region="Sample Region",
			population=2000,
			currency_code="SMP",
			exchange_rate=4.0,
			estimated_gdp=1000.0,
			flag_url="http://example.com/flag2.png",
			last_refreshed_at=now,
		)

	def test_list_countries_basic(self):
		resp = self.client.get('/countries')
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		self.assertIsInstance(resp.json(), list)
		self.assertEqual(len(resp.json()), 2)

	def test_list_countries_filters_and_sort(self):
		# filter by region (case-insensitive)
		resp = self.client.get('/countries', {'region': 'sample region'})
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		data = resp.json()
		self.assertEqual(len(data), 1)
		self.assertEqual(data[0]['name'], 'Samplestan')

		# filter by currency (case-insensitive)
		resp = self.client.get('/countries', {'currency': 'tst'})
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		data = resp.json()
		self.assertEqual(len(data), 1)
		self.assertEqual(data[0]['name'], 'Testland')

		# sort by gdp_desc
		resp = self.client.get('/countries', {'sort': 'gdp_desc'})
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		data = resp.json()
		self.assertEqual([c['name'] for c in data], ['Samplestan', 'Testland'])

		resp = self.client.get('/countries', {'sort': 'population_asc'})
		self.assertEqual([c['name'] for c in resp.json()], ['Testland', 'Samplestan'])

	def test_list_countries_rejects_unknown_sort(self):
		resp = self.client.get('/countries', {'sort': 'bogus'})
		self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
		self.assertIn('error', resp.json())

	def test_list_countries_paginated(self):
		resp = self.client.get('/countries', {'limit': 1, 'offset': 1})
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		data = resp.json()
		self.assertEqual(data['count'], 2)
		self.assertEqual([c['name'] for c in data['results']], ['Testland'])

	def test_get_country_success_and_not_found(self):
		resp = self.client.get('/countries/Testland')
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		self.assertEqual(resp.json()['name'], 'Testland')

		resp = self.client.get('/countries/TESTLAND')
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		self.assertEqual(resp.json()['currency_code'], 'TST')

		# not found
		resp = self.client.get('/countries/NoSuchCountry')
		self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
		self.assertIn('error', resp.json())

	def test_delete_country_success_and_not_found(self):
		resp = self.client.delete('/countries/samplestan')
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		self.assertEqual(resp.json()['deleted_count'], 1)
		self.assertEqual(RefreshStatus.load().total_countries, 1)

		# subsequent delete should return 404
		resp = self.client.delete('/countries/Samplestan')
		self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
		self.assertIn('error', resp.json())

	def test_status_view(self):
		resp = self.client.get('/status')
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		data = resp.json()
		self.assertIn('total_countries', data)
		self.assertIn('last_refreshed_at', data)
		self.assertIsNone(data['last_refreshed_at'])
		# the seeded row counts refreshed countries only
		self.assertEqual(data['cache_status'], 'EMPTY')

	def test_status_view_reports_ready_after_refresh(self):
		upsert_countries([make_record('France', 10.0, timezone.now())], timezone.now())
		data = self.client.get('/status').json()
		self.assertEqual(data['total_countries'], 3)
		self.assertEqual(data['cache_status'], 'READY')

	def test_get_status_reads_seeded_row_without_writing(self):
		self.assertTrue(RefreshStatus.objects.filter(pk=RefreshStatus.SINGLETON_ID).exists())
		self.assertEqual(selectors.get_status().pk, RefreshStatus.SINGLETON_ID)

		RefreshStatus.objects.all().delete()
		status_row = selectors.get_status()
		self.assertEqual((status_row.total_countries, status_row.cache_status), (0, 'EMPTY'))
		self.assertFalse(RefreshStatus.objects.exists())

	def test_get_summary_image_generates_placeholder(self):
		self.assertFalse(os.path.exists(self.image_path))

		resp = self.client.get('/countries/image')
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		self.assertEqual(resp['Content-Type'], 'image/png')
		body = b''.join(resp.streaming_content)
		resp.close()
		self.assertTrue(body.startswith(b'\x89PNG'))
		self.assertTrue(os.path.exists(self.image_path))

	def test_get_summary_image_serves_existing_file(self):
		os.makedirs(os.path.dirname(self.image_path), exist_ok=True)
		with open(self.image_path, 'wb') as f:
			f.write(b'PNGDATA')

		resp = self.client.get('/countries/image')
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		body = b''.join(resp.streaming_content)
		resp.close()
		self.assertEqual(body, b'PNGDATA')

	@mock.patch('countries.sources.requests.get')
	def test_refresh_countries_success_and_external_failure(self, mock_get):
		mock_get.side_effect = fake_get()

		resp = self.client.post('/countries/refresh')
		self.assertEqual(resp.status_code, status.HTTP_200_OK)
		data = resp.json()
		self.assertIn('message', data)
		# Testland is updated in place, three new countries, the nameless one is skipped
		self.assertEqual(data['total_countries'], 5)
		self.assertEqual(Country.objects.count(), 5)
		self.assertEqual(RefreshStatus.load().total_countries, 5)
		self.assertTrue(os.path.exists(self.image_path))

		# simulate external failure
		mock_get.side_effect = requests.exceptions.ConnectionError('network error')
		resp = self.client.post('/countries/refresh')
		self.assertEqual(resp.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
		self.assertIn('error', resp.json())
		self.assertEqual(Country.objects.count(), 5)

	@mock.patch('countries.views.services.refresh_countries')
	def test_refresh_storage_failure_and_in_progress(self, mock_refresh):
		mock_refresh.side_effect = StorageFailure('disk full')
		resp = self.client.post('/countries/refresh')
		self.assertEqual(resp.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)

		mock_refresh.side_effect = RefreshInProgress('busy')
		resp = self.client.post('/countries/refresh')
		self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)


class SourceGatewayTestCase(SimpleTestCase):

	@mock.patch('countries.sources.requests.get')
	def test_fetch_sources_returns_countries_and_rates(self, mock_get):
		mock_get.side_effect = fake_get()
		countries, rates = sources.fetch_sources()
		self.assertEqual(countries, MOCK_COUNTRIES)
		self.assertEqual(rates, MOCK_RATES['rates'])

	@override_settings(EXTERNAL_TIMEOUT=3)
	@mock.patch('countries.sources.requests.get')
	def test_timeout_setting_is_passed_through(self, mock_get):
		mock_get.return_value = FakeResp([])
		sources.fetch_countries()
		self.assertEqual(mock_get.call_args.kwargs['timeout'], 3)

	@mock.patch('countries.sources.requests.get')
	def test_timeout_raises_source_unavailable(self, mock_get):
		mock_get.side_effect = requests.exceptions.Timeout('read timed out')
		with self.assertRaises(SourceUnavailable) as ctx:
			sources.fetch_countries()
		self.assertEqual(ctx.exception.source, sources.COUNTRIES_SOURCE)
		self.assertEqual(ctx.exception.reason, 'timeout')
		# no retry
		self.assertEqual(mock_get.call_count, 1)

	@mock.patch('countries.sources.requests.get')
	def test_non_success_status_raises(self, mock_get):
		mock_get.return_value = FakeResp({'error': 'boom'}, status=502)
		with self.assertRaises(SourceUnavailable) as ctx:
			sources.fetch_exchange_rates()
		self.assertEqual(ctx.exception.source, sources.EXCHANGE_RATE_SOURCE)
		self.assertEqual(ctx.exception.reason, 'http_error')

	@mock.patch('countries.sources.requests.get')
	def test_missing_rates_object_is_malformed(self, mock_get):
		mock_get.return_value = FakeResp({'result': 'error'})
		with self.assertRaises(SourceUnavailable) as ctx:
			sources.fetch_exchange_rates()
		self.assertEqual(ctx.exception.reason, 'malformed')

	@mock.patch('countries.sources.requests.get')
	def test_invalid_json_is_malformed(self, mock_get):
		mock_get.return_value = FakeResp(ValueError('Expecting value'))
		with self.assertRaises(SourceUnavailable) as ctx:
			sources.fetch_countries()
		self.assertEqual(ctx.exception.reason, 'malformed')

	@mock.patch('countries.sources.requests.get')
	def test_non_numeric_rate_is_malformed(self, mock_get):
		for bad_rate in ('0.9', None, True):
			mock_get.return_value = FakeResp({'rates': {'USD': 1, 'EUR': bad_rate}})
			with self.assertRaises(SourceUnavailable) as ctx:
				sources.fetch_exchange_rates()
			self.assertEqual(ctx.exception.source, sources.EXCHANGE_RATE_SOURCE)
			self.assertEqual(ctx.exception.reason, 'malformed')
			self.assertIn('EUR', ctx.exception.detail)

	@mock.patch('countries.sources.requests.get')
	def test_one_failing_source_aborts_both(self, mock_get):
		def side_effect(url, timeout=None, headers=None):
			if 'restcountries' in url:
				return FakeResp(MOCK_COUNTRIES)
			raise requests.exceptions.ConnectionError('refused')

		mock_get.side_effect = side_effect
		with self.assertRaises(SourceUnavailable) as ctx:
			sources.fetch_sources()
		self.assertEqual(ctx.exception.source, sources.EXCHANGE_RATE_SOURCE)
		self.assertEqual(ctx.exception.reason, 'connection')


class ReconcileTestCase(SimpleTestCase):

	def setUp(self):
		self.now = timezone.now()
		self.rates = MOCK_RATES['rates']

	def test_estimated_gdp_with_pinned_multiplier(self):
		multipliers = FixedMultiplier(1500)
		record = normalize_country(MOCK_COUNTRIES[1], self.rates, self.now, multipliers)
		self.assertEqual(record['currency_code'], 'NGN')
		self.assertEqual(record['exchange_rate'], 1500.0)
		self.assertEqual(record['estimated_gdp'], 2000000.0)
		self.assertEqual(multipliers.calls, [(1000, 2000)])

		record = normalize_country(MOCK_COUNTRIES[0], self.rates, self.now, multipliers)
		self.assertEqual(record['estimated_gdp'], 750000.0)
		self.assertEqual(record['last_refreshed_at'], self.now)

	def test_currency_without_rate_leaves_rate_and_gdp_null(self):
		raw = {'name': 'Testland', 'population': 1000000, 'currencies': [{'code': 'abc'}]}
		record = normalize_country(raw, self.rates, self.now, FixedMultiplier())
		self.assertEqual(record['currency_code'], 'ABC')
		self.assertIsNone(record['exchange_rate'])
		self.assertIsNone(record['estimated_gdp'])

	def test_missing_currency_uses_sentinel_and_zero_gdp(self):
		for currencies in (None, [], [{}], [{'code': ''}]):
			raw = {'name': 'Antarctica', 'population': 1000}
			if currencies is not None:
				raw['currencies'] = currencies
			record = normalize_country(raw, self.rates, self.now, FixedMultiplier())
			self.assertEqual(record['currency_code'], NO_CURRENCY)
			self.assertIsNone(record['exchange_rate'])
			self.assertEqual(record['estimated_gdp'], 0)

	def test_zero_population_keeps_rate_without_gdp(self):
		raw = {'name': 'Emptyland', 'population': 0, 'currencies': [{'code': 'EUR'}]}
		multipliers = FixedMultiplier()
		record = normalize_country(raw, self.rates, self.now, multipliers)
		self.assertEqual(record['exchange_rate'], 0.9)
		self.assertIsNone(record['estimated_gdp'])
		self.assertEqual(multipliers.calls, [])

	def test_invalid_descriptors_are_skipped_not_fatal(self):
		raw = [
			{'population': 10},
			{'name': '  ', 'population': 10},
			{'name': 'Nopop'},
			{'name': 'Negative', 'population': -5},
			'not a country',
			MOCK_COUNTRIES[0],
		]
		records = reconcile_countries(raw, self.rates, self.now, FixedMultiplier())
		self.assertEqual([r['name'] for r in records], ['Mockland'])

	def test_case_insensitive_duplicates_collapse(self):
		raw = [
			{'name': 'France', 'population': 100, 'currencies': [{'code': 'EUR'}]},
			{'name': 'Spain', 'population': 50},
			{'name': 'france', 'population': 200, 'currencies': [{'code': 'EUR'}]},
		]
		records = reconcile_countries(raw, self.rates, self.now, FixedMultiplier())
		self.assertEqual([r['name'] for r in records], ['france', 'Spain'])
		self.assertEqual(records[0]['population'], 200)

	def test_default_multiplier_is_within_range(self):
		records = reconcile_countries([MOCK_COUNTRIES[1]], self.rates, self.now)
		gdp = records[0]['estimated_gdp']
		self.assertGreaterEqual(gdp, 2000000 * 1000 / 1500.0)
		self.assertLessEqual(gdp, 2000000 * 2000 / 1500.0)


def make_record(name, gdp, now, **extra):
	record = {
		'name': name,
		'capital': None,
		'region': None,
		'population': 100,
		'currency_code': 'USD',
		'exchange_rate': 1.0,
		'estimated_gdp': gdp,
		'flag_url': None,
		'last_refreshed_at': now,
	}
	record.update(extra)
	return record


class PersistenceTestCase(TestCase):

	def setUp(self):
		self.now = timezone.now()

	def test_upsert_inserts_and_updates_status(self):
		result = upsert_countries([make_record('France', 10.0, self.now), make_record('Chad', 5.0, self.now)], self.now)
		self.assertEqual(result.total, 2)
		self.assertEqual([c.name for c in result.top_countries], ['France', 'Chad'])

		status_row = RefreshStatus.load()
		self.assertEqual(status_row.total_countries, 2)
		self.assertEqual(status_row.last_refreshed_at, self.now)
		self.assertEqual(status_row.version, 1)

	def test_upsert_matches_names_case_insensitively(self):
		upsert_countries([make_record('France', 10.0, self.now)], self.now)
		later = self.now + datetime.timedelta(hours=1)
		result = upsert_countries([make_record('france', 20.0, later, population=999)], later)

		self.assertEqual(result.total, 1)
		country = Country.objects.get()
		self.assertEqual(country.name, 'france')
		self.assertEqual(country.name_key, 'france')
		self.assertEqual(country.population, 999)
		self.assertEqual(country.estimated_gdp, 20.0)
		self.assertEqual(country.last_refreshed_at, later)
		self.assertEqual(RefreshStatus.load().version, 2)

	def test_upsert_same_batch_duplicates_store_one_row(self):
		result = upsert_countries([make_record('France', 1.0, self.now), make_record('FRANCE', 2.0, self.now)], self.now)
		self.assertEqual(result.total, 1)
		self.assertEqual(Country.objects.get().estimated_gdp, 2.0)

	def test_top_countries_break_ties_by_name(self):
		records = [
			make_record('Zed', 100.0, self.now),
			make_record('Alpha', 100.0, self.now),
			make_record('Mid', 100.0, self.now),
			make_record('Big', 500.0, self.now),
			make_record('Nullish', None, self.now),
			make_record('Small', 1.0, self.now),
			make_record('Beta', 100.0, self.now),
		]
		result = upsert_countries(records, self.now)
		self.assertEqual([c.name for c in result.top_countries], ['Big', 'Alpha', 'Beta', 'Mid', 'Zed'])
		self.assertEqual([c.name for c in top_countries(7)][-1], 'Nullish')

	def test_storage_failure_rolls_back_everything(self):
		upsert_countries([make_record('France', 10.0, self.now)], self.now)
		before = RefreshStatus.load()

		with mock.patch('countries.persistence.top_countries', side_effect=DatabaseError('locked')):
			with self.assertRaises(StorageFailure):
				upsert_countries([make_record('Chad', 5.0, self.now), make_record('France', 99.0, self.now)], self.now)

		self.assertEqual(list(Country.objects.values_list('name', 'estimated_gdp')), [('France', 10.0)])
		after = RefreshStatus.load()
		self.assertEqual((after.total_countries, after.version), (before.total_countries, before.version))

	def test_delete_recounts_without_touching_refresh_time(self):
		upsert_countries([make_record('France', 10.0, self.now), make_record('Chad', 5.0, self.now)], self.now)

		self.assertEqual(delete_country('CHAD'), 1)
		status_row = RefreshStatus.load()
		self.assertEqual(status_row.total_countries, Country.objects.count())
		self.assertEqual(status_row.total_countries, 1)
		self.assertEqual(status_row.last_refreshed_at, self.now)

	def test_delete_storage_failure_rolls_back(self):
		upsert_countries([make_record('France', 10.0, self.now), make_record('Chad', 5.0, self.now)], self.now)
		before = RefreshStatus.load()

		with mock.patch('countries.persistence._write_status', side_effect=DatabaseError('locked')):
			with self.assertRaises(StorageFailure):
				delete_country('Chad')

		self.assertEqual(Country.objects.count(), 2)
		self.assertTrue(Country.objects.filter(name_key='chad').exists())
		after = RefreshStatus.load()
		self.assertEqual((after.total_countries, after.version), (2, before.version))

	def test_delete_missing_country_leaves_status_unchanged(self):
		upsert_countries([make_record('France', 10.0, self.now)], self.now)
		before = RefreshStatus.load()

		with self.assertRaises(CountryNotFound):
			delete_country('Atlantis')

		after = RefreshStatus.load()
		self.assertEqual(
			(after.total_countries, after.last_refreshed_at, after.version),
			(before.total_countries, before.last_refreshed_at, before.version),
		)


class RefreshPipelineTestCase(TempImagePathMixin, TestCase):

	STRUCTURAL_FIELDS = ('name', 'capital', 'region', 'population', 'currency_code',
						 'exchange_rate', 'estimated_gdp', 'flag_url')

	def snapshot(self):
		return list(Country.objects.order_by('name').values_list(*self.STRUCTURAL_FIELDS))

	@mock.patch('countries.sources.requests.get')
	def test_refresh_stores_reconciled_batch(self, mock_get):
		mock_get.side_effect = fake_get()
		result = services.refresh_countries(multipliers=FixedMultiplier(1500))

		self.assertEqual(result.total_records, 4)
		status_row = RefreshStatus.load()
		self.assertEqual(status_row.total_countries, Country.objects.count())
		self.assertEqual(status_row.last_refreshed_at, result.timestamp)

		self.assertEqual(Country.objects.get(name_key='nigeria').estimated_gdp, 2000000.0)
		testland = Country.objects.get(name_key='testland')
		self.assertEqual((testland.exchange_rate, testland.estimated_gdp), (None, None))
		antarctica = Country.objects.get(name_key='antarctica')
		self.assertEqual((antarctica.currency_code, antarctica.estimated_gdp), (NO_CURRENCY, 0))

		self.assertFalse(Country.objects.filter(currency_code='').exists())
		for country in Country.objects.filter(currency_code=NO_CURRENCY):
			self.assertEqual(country.estimated_gdp, 0)
		self.assertTrue(all(c.last_refreshed_at == result.timestamp for c in Country.objects.all()))

		size, text = self.image_summary()
		self.assertEqual(size, (600, 400))
		self.assertIn('Total Countries Cached: 4', text)
		self.assertIn('1. Nigeria ($2,000,000)', text)
		self.assertIn('2. Mockland ($750,000)', text)

	@mock.patch('countries.sources.requests.get')
	def test_refresh_twice_is_reproducible_with_pinned_multiplier(self, mock_get):
		mock_get.side_effect = fake_get()
		services.refresh_countries(multipliers=FixedMultiplier(1500))
		first = self.snapshot()
		services.refresh_countries(multipliers=FixedMultiplier(1500))

		self.assertEqual(self.snapshot(), first)
		self.assertEqual(Country.objects.count(), 4)
		self.assertEqual(RefreshStatus.load().version, 2)

	@mock.patch('countries.sources.requests.get')
	def test_source_failure_leaves_prior_state_intact(self, mock_get):
		mock_get.side_effect = fake_get()
		services.refresh_countries(multipliers=FixedMultiplier(1500))
		before = self.snapshot()
		status_before = RefreshStatus.load()
		os.remove(self.image_path)

		mock_get.side_effect = fake_get(rates={'rates': None})
		with self.assertRaises(SourceUnavailable):
			services.refresh_countries(multipliers=FixedMultiplier(1000))

		self.assertEqual(self.snapshot(), before)
		status_after = RefreshStatus.load()
		self.assertEqual(status_after.version, status_before.version)
		self.assertEqual(status_after.last_refreshed_at, status_before.last_refreshed_at)
		self.assertFalse(os.path.exists(self.image_path))

	@mock.patch('countries.services.generate_summary_image')
	@mock.patch('countries.sources.requests.get')
	def test_render_failure_propagates_after_commit(self, mock_get, mock_render):
		mock_get.side_effect = fake_get()
		mock_render.side_effect = OSError('read-only file system')

		with self.assertRaises(OSError):
			services.refresh_countries(multipliers=FixedMultiplier(1500))
		# the upsert had already committed; only the image is missing
		self.assertEqual(Country.objects.count(), 4)
		self.assertEqual(RefreshStatus.load().total_countries, 4)

		resp = APIClient().post('/countries/refresh')
		self.assertEqual(resp.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
		self.assertIn('error', resp.json())
		# the lock is released after the failure
		self.assertFalse(services._refresh_lock.locked())

	def test_concurrent_refresh_is_rejected(self):
		services._refresh_lock.acquire()
		try:
			with mock.patch('countries.services.fetch_sources') as mock_fetch:
				with self.assertRaises(RefreshInProgress):
					services.refresh_countries()
				mock_fetch.assert_not_called()
		finally:
			services._refresh_lock.release()

	@mock.patch('countries.services.fetch_sources')
	def test_management_command(self, mock_fetch):
		mock_fetch.return_value = (MOCK_COUNTRIES[:2], MOCK_RATES['rates'])
		out = io.StringIO()
		call_command('refresh_countries', stdout=out)
		self.assertIn('Refreshed 2 countries', out.getvalue())

		mock_fetch.side_effect = SourceUnavailable(sources.COUNTRIES_SOURCE, 'timeout')
		with self.assertRaises(CommandError):
			call_command('refresh_countries', stdout=io.StringIO())


class SummaryImageTestCase(TempImagePathMixin, SimpleTestCase):

	def test_lines_format_rank_amount_and_timestamp(self):
		ts = datetime.datetime(2025, 10, 28, 13, 5, 9, tzinfo=datetime.timezone.utc)
		top = [Country(name='Nigeria', estimated_gdp=1234567.6), Country(name='Chad', estimated_gdp=None)]
		lines = summary_lines(12, ts, top)

		self.assertEqual(lines[0], 'Country API Data Summary')
		self.assertIn('Total Countries Cached: 12', lines)
		self.assertIn('Last Refreshed: Oct 28, 2025, 1:05:09 PM UTC', lines)
		self.assertIn('1. Nigeria ($1,234,568)', lines)
		self.assertIn('2. Chad (N/A)', lines)
		self.assertNotIn(PLACEHOLDER, lines)

	def test_empty_ranking_renders_placeholder(self):
		generate_summary_image(0, timezone.now(), [])

		self.assertTrue(os.path.exists(self.image_path))
		self.assertGreater(os.path.getsize(self.image_path), 0)
		size, text = self.image_summary()
		self.assertEqual(size, (600, 400))
		self.assertIn(PLACEHOLDER, text.splitlines())

	def test_regeneration_overwrites_previous_image(self):
		generate_summary_image(1, timezone.now(), [])
		generate_summary_image(7, timezone.now(), [Country(name='Chad', estimated_gdp=5.0)])

		_, text = self.image_summary()
		self.assertIn('Total Countries Cached: 7', text)
		self.assertIn('1. Chad ($5)', text)
		self.assertEqual(os.listdir(os.path.dirname(self.image_path)), ['summary.png'])

	def test_ensure_summary_image_only_draws_when_missing(self):
		path = ensure_summary_image()
		self.assertEqual(str(path), self.image_path)
		_, text = self.image_summary()
		self.assertIn(PLACEHOLDER, text)

		with open(self.image_path, 'wb') as f:
			f.write(b'PNGDATA')
		ensure_summary_image()
		with open(self.image_path, 'rb') as f:
			self.assertEqual(f.read(), b'PNGDATA')

	def test_failed_write_leaves_no_temp_file(self):
		def failing_save(img, fp, *args, **kwargs):
			with open(fp, 'wb') as f:
				f.write(b'partial')
			raise OSError('disk full')

		with mock.patch.object(Image.Image, 'save', autospec=True, side_effect=failing_save):
			with self.assertRaises(OSError):
				generate_summary_image(0, timezone.now(), [])

		self.assertEqual(os.listdir(os.path.dirname(self.image_path)), [])
