from unittest import mock

import requests
from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, override_settings

from crawler.assets import dispatch_asset_tasks


def make_tasks(count):
    return [
        {
            "sourceUrl": f"https://image.civitai.test/{i}.jpeg",
            "storageKey": f"images/{i}",
        }
        for i in range(count)
    ]


def accepted_response():
    response = mock.MagicMock()
    response.status_code = 202
    return response


class DispatchAssetTasksTests(SimpleTestCase):
    @mock.patch("crawler.assets.requests.post")
    def test_tasks_are_batched(self, mock_post):
        mock_post.return_value = accepted_response()

        results = dispatch_asset_tasks(make_tasks(250))

        self.assertEqual(mock_post.call_count, 3)
        self.assertEqual([result.size for result in results], [100, 100, 50])
        self.assertTrue(all(result.ok for result in results))

        sizes = sorted(
            len(call.kwargs["json"]["tasks"]) for call in mock_post.call_args_list
        )
        self.assertEqual(sizes, [50, 100, 100])

        call = mock_post.call_args_list[0]
        self.assertEqual(call.args[0], "https://assets.test/enqueue")
        self.assertEqual(call.kwargs["headers"]["Authorization"], "Bearer test-secret")
        self.assertEqual(call.kwargs["timeout"], 60)

    @override_settings(ASSETS_BATCH_SIZE=500)
    @mock.patch("crawler.assets.requests.post")
    def test_batch_size_is_capped(self, mock_post):
        mock_post.return_value = accepted_response()

        results = dispatch_asset_tasks(make_tasks(150))

        self.assertEqual([result.size for result in results], [100, 50])

    @override_settings(ASSETS_BATCH_SIZE=2)
    @mock.patch("crawler.assets.requests.post")
    def test_failed_batch_does_not_stop_others(self, mock_post):
        def post(url, json, **kwargs):
            if json["tasks"][0]["storageKey"] == "images/2":
                raise requests.ConnectionError("Connection refused")
            return accepted_response()

        mock_post.side_effect = post

        results = dispatch_asset_tasks(make_tasks(6))

        self.assertEqual([result.ok for result in results], [True, False, True])
        self.assertEqual(results[1].error, "Connection refused")
        self.assertIsNone(results[1].status_code)

    @mock.patch("crawler.assets.requests.post")
    def test_rejected_batch_reports_status(self, mock_post):
        error_response = requests.Response()
        error_response.status_code = 500
        error_response.url = "https://assets.test/enqueue"
        response = mock.MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError(
            response=error_response
        )
        mock_post.return_value = response

        results = dispatch_asset_tasks(make_tasks(1))

        self.assertFalse(results[0].ok)
        self.assertEqual(results[0].status_code, 500)
        self.assertEqual(results[0].error, "HTTP 500 for https://assets.test/enqueue")

    @mock.patch("crawler.assets.requests.post")
    def test_no_tasks(self, mock_post):
        self.assertEqual(dispatch_asset_tasks([]), [])
        self.assertFalse(mock_post.called)

    @mock.patch("crawler.assets.requests.post")
    def test_missing_configuration_fails_fast(self, mock_post):
        for overrides in ({"ASSETS_WORKER_URL": ""}, {"ASSETS_SECRET": ""}):
            with self.subTest(overrides=overrides), override_settings(**overrides):
                with self.assertRaises(ImproperlyConfigured):
                    dispatch_asset_tasks(make_tasks(1))
                with self.assertRaises(ImproperlyConfigured):
                    dispatch_asset_tasks([])
        self.assertFalse(mock_post.called)
