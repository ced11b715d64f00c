"""
Tracking API Tests
==================

REST write boundary, order reads and the public tracking gateway.
The app's service publishes through the test settings' in-memory
channel layer.
"""

from django.core.cache import cache
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework.test import APIClient

from tracking.models import OrderStatus
from tracking.tests.helpers import create_actors, create_order


class TrackingAPITestCase(TestCase):

    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.actors = create_actors()
        self.vendor = self.actors['vendor']
        self.courier = self.actors['courier']
        self.customer = self.actors['customer']
        self.order = create_order(self.vendor, self.customer)

    def as_user(self, user):
        self.client.force_authenticate(user=user)
        return self.client

    def url(self, name, order=None):
        return reverse(name, kwargs={'order_id': str((order or self.order).pk)})

    def assign(self):
        return self.as_user(self.vendor).post(
            self.url('order-assign'), {'courier_id': str(self.courier.pk)}, format='json'
        )


class TestStatusEndpoints(TrackingAPITestCase):

    def test_assign_then_pick(self):
        """Vendor assigns its courier, the courier marks the parcel picked."""
        response = self.assign()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['order']['status'], OrderStatus.ASSIGNED)
        self.assertEqual(response.data['order']['courier_id'], str(self.courier.pk))

        response = self.as_user(self.courier).post(
            self.url('order-status'), {'status': 'picked'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['order']['status'], OrderStatus.PICKED)

    def test_courier_skipping_ahead_gets_409(self):
        response = self.as_user(self.courier).post(
            self.url('order-status'), {'status': 'in_transit'}, format='json'
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'invalid_transition')
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING)

    def test_stale_expected_status_gets_409(self):
        self.assign()
        response = self.as_user(self.vendor).post(
            self.url('order-status'),
            {'status': 'cancelled', 'expected_status': 'pending'},
            format='json',
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'stale_state')

    def test_assign_foreign_courier_forbidden(self):
        response = self.as_user(self.vendor).post(
            self.url('order-assign'),
            {'courier_id': str(self.actors['other_courier'].pk)},
            format='json',
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['error'], 'not_authorized')

    def test_status_via_status_endpoint_with_courier_id(self):
        response = self.as_user(self.vendor).post(
            self.url('order-status'),
            {'status': 'assigned', 'courier_id': str(self.courier.pk)},
            format='json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['order']['courier_name'], 'Coursier Test')

    def test_unknown_status_is_400(self):
        response = self.as_user(self.vendor).post(
            self.url('order-status'), {'status': 'teleported'}, format='json'
        )
        self.assertEqual(response.status_code, 400)

    def test_anonymous_rejected(self):
        response = self.client.post(self.url('order-status'), {'status': 'cancelled'}, format='json')
        self.assertEqual(response.status_code, 401)

    def test_unknown_order_is_404(self):
        response = self.as_user(self.vendor).post(
            reverse('order-status', kwargs={'order_id': '00000000-0000-0000-0000-000000000000'}),
            {'status': 'cancelled'},
            format='json',
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['error'], 'not_found')


class TestLocationEndpoints(TrackingAPITestCase):

    def setUp(self):
        super().setUp()
        self.assign()

    def test_assigned_courier_posts_location(self):
        response = self.as_user(self.courier).post(
            self.url('order-location'),
            {'latitude': 40.73, 'longitude': -73.99, 'address': 'Union Square'},
            format='json',
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['location']['address'], 'Union Square')

        response = self.as_user(self.customer).get(self.url('order-location'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['current_location']['latitude'], 40.73)

    def test_other_users_cannot_post_location(self):
        for user in (self.vendor, self.customer, self.actors['other_courier']):
            response = self.as_user(user).post(
                self.url('order-location'), {'latitude': 1, 'longitude': 1}, format='json'
            )
            self.assertEqual(response.status_code, 403)
        self.assertEqual(self.order.location_history.count(), 0)

    def test_out_of_range_location_is_400(self):
        response = self.as_user(self.courier).post(
            self.url('order-location'), {'latitude': 120, 'longitude': 0}, format='json'
        )
        self.assertEqual(response.status_code, 400)

    def test_history_with_limit(self):
        for lat in (40.70, 40.71, 40.72):
            self.as_user(self.courier).post(
                self.url('order-location'), {'latitude': lat, 'longitude': -74.0}, format='json'
            )
        response = self.as_user(self.vendor).get(self.url('order-location-history') + '?limit=2')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['count'], 2)
        self.assertEqual([p['latitude'] for p in response.data['history']], [40.71, 40.72])

    def test_history_bad_limit(self):
        response = self.as_user(self.vendor).get(self.url('order-location-history') + '?limit=abc')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'invalid_limit')

    def test_outsider_cannot_read(self):
        response = self.as_user(self.actors['other_vendor']).get(self.url('order-detail'))
        self.assertEqual(response.status_code, 403)

    def test_order_detail_and_timeline(self):
        response = self.as_user(self.customer).get(self.url('order-detail'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['order_number'], self.order.order_number)
        self.assertFalse(response.data['tracking_link_issued'])

        response = self.as_user(self.customer).get(self.url('order-timeline'))
        self.assertEqual([s['step'] for s in response.data['history']], ['created', 'assigned'])


class TestPublicTracking(TrackingAPITestCase):

    def setUp(self):
        super().setUp()
        response = self.as_user(self.vendor).post(self.url('order-tracking-link'))
        self.assertEqual(response.status_code, 201)
        self.token = response.data['tracking_token']
        self.client = APIClient()

    def track_url(self, name='track', order_number=None, token=None):
        return reverse(name, kwargs={
            'order_number': order_number or self.order.order_number,
            'token': token or self.token,
        })

    def test_tracking_link_needs_owning_vendor(self):
        response = self.as_user(self.customer).post(self.url('order-tracking-link'))
        self.assertEqual(response.status_code, 403)

    def test_track_without_session(self):
        response = self.client.get(self.track_url())
        self.assertEqual(response.status_code, 200)
        order = response.data['order']
        self.assertEqual(order['status'], OrderStatus.PENDING)
        self.assertFalse(order['courier_assigned'])
        self.assertNotIn('vendor_id', order)
        self.assertNotIn('id', order)

    def test_token_of_another_order_rejected(self):
        """A token generated for another order opens nothing and returns no data."""
        other = create_order(self.vendor)
        other_token = self.as_user(self.vendor).post(self.url('order-tracking-link', other)).data['tracking_token']
        self.client = APIClient()

        response = self.client.get(self.track_url(token=other_token))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['error'], 'invalid_token')
        self.assertNotIn('order', response.data)

    def test_unknown_order_number_same_error(self):
        wrong = self.client.get(self.track_url(token='0' * 64))
        unknown = self.client.get(self.track_url(order_number='ORD-00000000-0000'))
        self.assertEqual(wrong.status_code, unknown.status_code)
        self.assertEqual(wrong.data, unknown.data)

    def test_public_timeline(self):
        response = self.client.get(self.track_url('track-timeline'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['current_status'], OrderStatus.PENDING)

    def test_public_eta(self):
        response = self.client.get(self.track_url('track-eta') + '?speed=30')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['origin'], 'pickup_location')
        self.assertIn('min', response.data['display'])

    def test_public_eta_bad_speed(self):
        for speed in ('fast', '0', '-3'):
            response = self.client.get(self.track_url('track-eta') + f'?speed={speed}')
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.data['error'], 'invalid_speed')

    @override_settings(TRACKING_RATE_LIMIT=(3, 60))
    def test_gateway_rate_limited(self):
        """Token guessing hits the per-IP gateway budget."""
        statuses = [
            self.client.get(self.track_url(token=f'{i:064d}')).status_code
            for i in range(4)
        ]
        self.assertEqual(statuses, [404, 404, 404, 429])
