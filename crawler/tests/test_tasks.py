import datetime
from unittest import mock

import requests
from celery.exceptions import Retry
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from civicache.models import Image
from civicache.tests.utils import (
    create_image,
    create_run,
    create_snapshot,
    image_payload,
)
from civicache.utils.url import get_query_param
from crawler import tasks
from crawler.assets import BatchResult
from crawler.client import Page
from crawler.exceptions import QueryFetchError, TransientQueryFetchError
from crawler.models import EntitySnapshot, Run
from crawler.orchestrator import claim_next_run
from crawler.pipeline import IngestResult

TASK_ID = "3b241101-e2bb-4255-8caf-4136c566a962"


class PageRetryCountdownTests(SimpleTestCase):
    def test_transient_errors_back_off_quadratically(self):
        self.assertEqual(tasks.get_page_retry_countdown(requests.Timeout(), 0), 1)
        self.assertEqual(tasks.get_page_retry_countdown(requests.Timeout(), 3), 16)
        self.assertEqual(
            tasks.get_page_retry_countdown(
                TransientQueryFetchError("HTTP 503", status_code=503), 1
            ),
            4,
        )
        self.assertEqual(
            tasks.get_page_retry_countdown(requests.ConnectionError(), 8), 81
        )

    def test_budget_is_bounded(self):
        self.assertIsNone(tasks.get_page_retry_countdown(requests.Timeout(), 9))

    def test_other_errors_are_not_retried(self):
        for exc in (
            QueryFetchError("HTTP 404", status_code=404),
            QueryFetchError("Unexpected response shape"),
            ValueError("bad"),
        ):
            with self.subTest(exc=exc):
                self.assertIsNone(tasks.get_page_retry_countdown(exc, 0))

    def test_transient_status_without_subclass(self):
        self.assertTrue(
            tasks.is_transient_error(QueryFetchError("HTTP 429", status_code=429))
        )


class CrawlWorkerTaskTests(TestCase):
    def setUp(self):
        client_patcher = mock.patch("crawler.orchestrator.CivitaiClient")
        self.client = client_patcher.start().return_value
        self.addCleanup(client_patcher.stop)

        enqueue_patcher = mock.patch("crawler.tasks.enqueue_worker")
        self.enqueue_worker = enqueue_patcher.start()
        self.addCleanup(enqueue_patcher.stop)

        retry_patcher = mock.patch.object(
            tasks.crawl_worker_task, "retry", side_effect=Retry()
        )
        self.retry = retry_patcher.start()
        self.addCleanup(retry_patcher.stop)

    def test_no_pending_runs(self):
        self.assertIsNone(tasks.crawl_worker_task())
        self.assertFalse(self.client.fetch_url.called)
        self.assertFalse(self.enqueue_worker.called)

    def test_success(self):
        run = create_run(items_target=50)
        self.client.fetch_url.return_value = Page(
            [image_payload(1), image_payload(2)], next_cursor="c1"
        )

        tasks.crawl_worker_task()

        run.refresh_from_db()
        self.assertEqual(run.status, Run.Status.PENDING)
        self.assertEqual(run.items_read, 2)
        self.assertEqual(Image.objects.count(), 2)
        self.enqueue_worker.assert_called_once_with()

    def test_redelivered_task_resumes_its_claimed_run(self):
        run = create_run(items_target=50)
        claimed = claim_next_run(task_id=TASK_ID)
        self.assertEqual(claimed, run)
        self.client.fetch_url.return_value = Page(
            [image_payload(1)], next_cursor="c1"
        )

        result = tasks.crawl_worker_task.apply(task_id=TASK_ID)

        self.assertTrue(result.successful())
        self.client.fetch_url.assert_called_once_with(run.url)
        run.refresh_from_db()
        self.assertEqual(run.status, Run.Status.PENDING)
        self.assertEqual(run.items_read, 1)
        self.enqueue_worker.assert_called_once_with()

    def test_stale_run_is_taken_over(self):
        run = create_run(items_target=50, status=Run.Status.IN_PROGRESS)
        Run.objects.filter(pk=run.pk).update(
            modified=timezone.now() - datetime.timedelta(hours=1)
        )
        self.client.fetch_url.return_value = Page(
            [image_payload(1)], next_cursor="c1"
        )

        tasks.crawl_worker_task()

        run.refresh_from_db()
        self.assertEqual(run.status, Run.Status.PENDING)
        self.assertEqual(run.items_read, 1)

    def test_timeouts_then_success(self):
        run = create_run(items_target=50)
        self.client.fetch_url.side_effect = [requests.Timeout()] * 4 + [
            Page([image_payload(1)], next_cursor="c1")
        ]

        with self.assertRaises(Retry):
            tasks.crawl_worker_task()

        run.refresh_from_db()
        self.assertEqual(run.status, Run.Status.IN_PROGRESS)
        self.assertEqual(run.retry_count, 1)
        self.assertEqual(run.error, "Timeout")
        self.assertEqual(self.retry.call_args.kwargs["countdown"], 1)
        self.assertEqual(self.retry.call_args.kwargs["kwargs"], {"run_pk": run.pk})

        for _ in range(3):
            with self.assertRaises(Retry):
                tasks.crawl_worker_task(run_pk=run.pk)

        tasks.crawl_worker_task(run_pk=run.pk)

        run.refresh_from_db()
        self.assertEqual(self.client.fetch_url.call_count, 5)
        self.assertEqual(run.status, Run.Status.PENDING)
        self.assertEqual(run.error, "")
        self.assertEqual(run.retry_count, 0)
        self.assertEqual(run.items_read, 1)
        self.assertEqual(get_query_param(run.url, "cursor"), "c1")
        self.enqueue_worker.assert_called_once_with()

    @override_settings(CRAWLER_PAGE_MAX_RETRIES=0)
    def test_exhausted_retries_fail_run(self):
        run = create_run()
        self.client.fetch_url.side_effect = requests.Timeout()

        tasks.crawl_worker_task()

        run.refresh_from_db()
        self.assertEqual(run.status, Run.Status.FAILED)
        self.assertEqual(run.error, "Timeout")
        self.assertIsNotNone(run.finished)
        self.assertFalse(self.retry.called)
        self.enqueue_worker.assert_called_once_with()

    def test_non_transient_error_fails_run(self):
        run = create_run()
        self.client.fetch_url.side_effect = QueryFetchError(
            "HTTP 400 from https://civitai.test/api/v1/images", status_code=400
        )

        tasks.crawl_worker_task()

        run.refresh_from_db()
        self.assertEqual(run.status, Run.Status.FAILED)
        self.assertEqual(run.error, "HTTP 400 from https://civitai.test/api/v1/images")
        self.assertFalse(self.retry.called)
        self.enqueue_worker.assert_called_once_with()

    def test_retry_of_finished_run_is_ignored(self):
        run = create_run(status=Run.Status.FAILED)

        self.assertIsNone(tasks.crawl_worker_task(run_pk=run.pk))
        self.assertIsNone(tasks.crawl_worker_task(run_pk=run.pk + 100))

        self.assertFalse(self.client.fetch_url.called)
        self.assertFalse(self.enqueue_worker.called)


class WorkerTaskTests(TestCase):
    @mock.patch("crawler.tasks.enqueue_worker")
    def test_start_crawl_worker(self, mock_enqueue):
        tasks.start_crawl_worker()
        mock_enqueue.assert_called_once_with()

    @mock.patch("crawler.tasks.dispatch_asset_tasks")
    def test_dispatch_assets_task(self, mock_dispatch):
        mock_dispatch.return_value = [
            BatchResult(0, 100, True),
            BatchResult(1, 5, False),
        ]
        asset_tasks = [{"sourceUrl": "https://x.test/1.jpeg", "storageKey": "images/1"}]

        self.assertEqual(tasks.dispatch_assets_task(asset_tasks), [True, False])
        mock_dispatch.assert_called_once_with(asset_tasks)

    @mock.patch("crawler.tasks.pipeline.fetch_model")
    def test_fetch_model_task(self, mock_fetch):
        mock_fetch.return_value = [
            IngestResult(snapshot_id=1, inserted=True, entity_pk=5),
            IngestResult(snapshot_id=2, error="bad", error_code="parse_failed"),
        ]
        self.assertEqual(tasks.fetch_model_task(4384), [5])
        mock_fetch.assert_called_once_with(4384)

    @mock.patch("crawler.tasks.pipeline.fetch_model_version")
    def test_fetch_model_version_task(self, mock_fetch):
        mock_fetch.return_value = [IngestResult(snapshot_id=1, entity_pk=8)]
        self.assertEqual(tasks.fetch_model_version_task(128713), [8])

    @mock.patch("crawler.tasks.pipeline.fetch_model_version_by_hash")
    def test_fetch_model_version_by_hash_task(self, mock_fetch):
        mock_fetch.return_value = [IngestResult(snapshot_id=1, entity_pk=8)]
        self.assertEqual(tasks.fetch_model_version_by_hash_task("879DB523C3"), [8])
        mock_fetch.assert_called_once_with("879DB523C3")

    @mock.patch("crawler.tasks.pipeline.fetch_creator")
    def test_fetch_creator_task(self, mock_fetch):
        mock_fetch.return_value = mock.MagicMock(pk=3)
        self.assertEqual(tasks.fetch_creator_task("Lykon"), 3)

        mock_fetch.return_value = None
        self.assertIsNone(tasks.fetch_creator_task("nobody"))


class ProcessUnlinkedSnapshotsTaskTests(TestCase):
    def setUp(self):
        patcher = mock.patch.object(tasks.process_unlinked_snapshots_task, "delay")
        self.delay = patcher.start()
        self.addCleanup(patcher.stop)

    @override_settings(CRAWLER_UNPROCESSED_BATCH_SIZE=2)
    def test_full_batch_queues_next(self):
        first = create_snapshot(payload=image_payload(1))
        second = create_snapshot(payload=image_payload(2, nsfwLevel="Extreme"))
        third = create_snapshot(payload=image_payload(3))

        tasks.process_unlinked_snapshots_task()

        self.assertEqual(Image.objects.count(), 1)
        first.refresh_from_db()
        self.assertIsNotNone(first.processed_object_id)
        self.delay.assert_called_once_with(
            EntitySnapshot.EntityType.IMAGE, after_pk=second.pk
        )

        self.delay.reset_mock()
        tasks.process_unlinked_snapshots_task(after_pk=second.pk)

        third.refresh_from_db()
        self.assertIsNotNone(third.processed_object_id)
        self.assertFalse(self.delay.called)

    def test_nothing_to_do(self):
        create_snapshot(payload=image_payload(1), processed_object_id=1)
        tasks.process_unlinked_snapshots_task()
        self.assertFalse(self.delay.called)


class DispatchUnstoredImagesTaskTests(TestCase):
    def setUp(self):
        patcher = mock.patch.object(tasks.dispatch_unstored_images_task, "delay")
        self.delay = patcher.start()
        self.addCleanup(patcher.stop)

        dispatch_patcher = mock.patch("crawler.tasks.dispatch_asset_tasks")
        self.dispatch = dispatch_patcher.start()
        self.dispatch.return_value = [BatchResult(0, 2, True)]
        self.addCleanup(dispatch_patcher.stop)

    @override_settings(CRAWLER_UNSTORED_BATCH_SIZE=2)
    def test_full_batch_queues_next(self):
        first = create_image(image_id=1)
        create_image(image_id=2, stored_at=timezone.now())
        second = create_image(image_id=3, storage_key="")
        third = create_image(image_id=4)

        tasks.dispatch_unstored_images_task()

        self.dispatch.assert_called_once_with(
            [
                {"sourceUrl": first.url, "storageKey": "images/1"},
                {"sourceUrl": second.url, "storageKey": "images/3"},
            ]
        )
        self.delay.assert_called_once_with(after_pk=second.pk)

        self.dispatch.reset_mock()
        self.delay.reset_mock()
        tasks.dispatch_unstored_images_task(after_pk=second.pk)

        self.dispatch.assert_called_once_with(
            [{"sourceUrl": third.url, "storageKey": "images/4"}]
        )
        self.assertFalse(self.delay.called)

    def test_nothing_to_do(self):
        create_image(image_id=1, stored_at=timezone.now())
        tasks.dispatch_unstored_images_task()
        self.assertFalse(self.dispatch.called)
        self.assertFalse(self.delay.called)
