from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase

from civicache.models import Creator, Image, sum_reactions

from .utils import create_image, create_snapshot


class SumReactionsTests(SimpleTestCase):
    def test_sum(self):
        self.assertEqual(
            sum_reactions(
                {
                    "likeCount": 1,
                    "heartCount": 2,
                    "laughCount": 3,
                    "cryCount": 4,
                    "commentCount": 5,
                    "collectedCount": 100,
                }
            ),
            15,
        )

    def test_missing_counters(self):
        self.assertEqual(sum_reactions({"likeCount": 2, "heartCount": None}), 2)
        self.assertEqual(sum_reactions(None), 0)


class ImageTests(TestCase):
    def test_image_id_is_unique(self):
        create_image(image_id=1001)
        with self.assertRaises(IntegrityError):
            create_image(image_id=1001)

    def test_snapshot_deletion_keeps_image(self):
        snapshot = create_snapshot()
        image = create_image(image_id=1001, entity_snapshot=snapshot)
        snapshot.delete()
        image.refresh_from_db()
        self.assertIsNone(image.entity_snapshot)

    def test_default_ordering_is_newest_first(self):
        create_image(image_id=1)
        create_image(image_id=3)
        create_image(image_id=2)
        self.assertEqual(
            list(Image.objects.values_list("image_id", flat=True)), [3, 2, 1]
        )


class CreatorTests(TestCase):
    def test_username_is_unique(self):
        Creator.objects.create(username="Lykon")
        with self.assertRaises(IntegrityError):
            Creator.objects.create(username="Lykon")

    def test_str(self):
        self.assertEqual(str(Creator(username="Lykon")), "Creator(Lykon)")
