from django.test import SimpleTestCase


class CoreViewTests(SimpleTestCase):
    def test_home_lists_endpoints(self):
        response = self.client.get('/')

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, '<h1>Aptfy</h1>')
        self.assertContains(response, '/api/payments/create')

    def test_health(self):
        response = self.client.get('/health')

        self.assertEqual(response.json(), {'status': 'ok'})
