from unittest import mock

from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from civicache.models import Image
from civicache.storage import (
    generate_storage_key,
    image_asset_task,
    record_image_storage,
    unstored_images,
)

from .utils import create_image


class StorageKeyTests(SimpleTestCase):
    def test_generate_storage_key(self):
        self.assertEqual(generate_storage_key("images", 1001), "images/1001")


class RecordImageStorageTests(TestCase):
    def test_record(self):
        create_image(image_id=1001)

        image = record_image_storage(
            1001, "images/1001", "https://assets.test/images/1001", size=2048
        )

        image.refresh_from_db()
        self.assertEqual(image.stored_url, "https://assets.test/images/1001")
        self.assertEqual(image.stored_size, 2048)
        self.assertIsNotNone(image.stored_at)

    def test_unknown_image(self):
        with self.assertRaises(Image.DoesNotExist):
            record_image_storage(404, "images/404", "https://assets.test/images/404")

    @mock.patch("civicache.storage.structured_logger")
    def test_key_mismatch_is_logged_and_recorded(self, mock_logger):
        create_image(image_id=1001, storage_key="images/1001")

        image = record_image_storage(
            1001, "images/other", "https://assets.test/images/other"
        )

        self.assertEqual(image.storage_key, "images/other")
        self.assertTrue(mock_logger.warning.called)
        self.assertEqual(
            mock_logger.warning.call_args.kwargs["reason_code"],
            "storage_key_mismatch",
        )


class UnstoredImagesTests(TestCase):
    def test_keyset_batches(self):
        first = create_image(image_id=1)
        create_image(image_id=2, stored_at=timezone.now())
        third = create_image(image_id=3)

        self.assertEqual(unstored_images(limit=1), [first])
        self.assertEqual(unstored_images(after_pk=first.pk), [third])

    def test_asset_task_derives_missing_key(self):
        image = create_image(image_id=7, storage_key="")
        self.assertEqual(
            image_asset_task(image),
            {
                "sourceUrl": "https://image.civitai.test/7.jpeg",
                "storageKey": "images/7",
            },
        )
