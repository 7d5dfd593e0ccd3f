import warnings
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase

from civicache.logging import CrawlerLogger


class CrawlerLoggerTests(SimpleTestCase):
    def setUp(self):
        self.mock_structlog_logger = MagicMock()
        self.logger = CrawlerLogger(self.mock_structlog_logger)

    def test_info_logs_with_event(self):
        self.logger.info("info msg", event_code="info_event", key="value")
        self.mock_structlog_logger.info.assert_called_once_with(
            "info msg", event_code="info_event", key="value"
        )

    def test_warning_requires_reason_and_reason_code(self):
        with self.assertRaises(TypeError):
            self.logger.warning("warn msg", event_code="warn_event", reason="why")

        self.logger.warning(
            "warn msg",
            event_code="warn_event",
            reason="why",
            reason_code="warn_code",
        )
        args, kwargs = self.mock_structlog_logger.warning.call_args
        self.assertEqual(args[0], "warn msg")
        self.assertEqual(kwargs["reason"], "why")
        self.assertEqual(kwargs["reason_code"], "warn_code")

    def test_error_with_empty_reason_raises(self):
        with self.assertRaises(ValueError):
            self.logger.error(
                "error msg", event_code="error_event", reason="", reason_code="code"
            )
        self.mock_structlog_logger.error.assert_not_called()

    def test_missing_event_code_raises(self):
        with self.assertRaises(ValueError):
            self.logger.info("msg", event_code=None)

    def test_missing_message_raises(self):
        with self.assertRaises(ValueError):
            self.logger.debug("", event_code="debug_event")

    def test_run_is_expanded(self):
        run = SimpleNamespace(pk=7, status="in_progress")
        self.logger.info("msg", event_code="run_event", run=run)
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertEqual(kwargs["run_id"], 7)
        self.assertEqual(kwargs["run_status"], "in_progress")
        self.assertNotIn("run", kwargs)

    def test_image_includes_snapshot_fields(self):
        snapshot = SimpleNamespace(pk=3, entity_type="image", entity_id=1001)
        image = SimpleNamespace(image_id=1001, entity_snapshot=snapshot)
        self.logger.info("msg", event_code="image_event", image=image)
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertEqual(kwargs["image_id"], 1001)
        self.assertEqual(kwargs["snapshot_id"], 3)
        self.assertEqual(kwargs["entity_type"], "image")

    def test_model_version_without_snapshot(self):
        version = SimpleNamespace(version_id=9, model_id=4, entity_snapshot=None)
        self.logger.info("msg", event_code="version_event", model_version=version)
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertEqual(kwargs["version_id"], 9)
        self.assertEqual(kwargs["model_id"], 4)
        self.assertNotIn("snapshot_id", kwargs)

    def test_explicit_value_overrides_extracted(self):
        run = SimpleNamespace(pk=7, status="pending")
        self.logger.info("msg", event_code="run_event", run=run, run_id=99)
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertEqual(kwargs["run_id"], 99)

    def test_none_values_are_dropped(self):
        self.logger.info("msg", event_code="event", missing=None, present=0)
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertNotIn("missing", kwargs)
        self.assertEqual(kwargs["present"], 0)

    def test_bind_keeps_context(self):
        run = SimpleNamespace(pk=7, status="pending")
        bound = self.logger.bind(run=run, worker="crawler")
        bound.info("msg", event_code="bound_event")
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertEqual(kwargs["run_id"], 7)
        self.assertEqual(kwargs["worker"], "crawler")

        # The original logger is unchanged
        self.logger.info("msg", event_code="unbound_event")
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertNotIn("run_id", kwargs)

    def test_register_extractor_overriding_default_warns(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            self.logger.register_extractor("run", lambda run: {"run_id": "custom"})
        self.assertTrue(any(w.category is UserWarning for w in caught))

        self.logger.info("msg", event_code="event", run=object())
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertEqual(kwargs["run_id"], "custom")

    def test_unregister_extractor(self):
        self.logger.register_extractor("thing", lambda thing: {"thing_id": 1})
        self.logger.unregister_extractor("thing")
        self.logger.info("msg", event_code="event", thing="raw")
        _, kwargs = self.mock_structlog_logger.info.call_args
        self.assertEqual(kwargs["thing"], "raw")
        self.assertNotIn("thing_id", kwargs)

    @patch("civicache.logging.structlog.get_logger")
    def test_get_logger_uses_structlog_namespace(self, mock_get_logger):
        logger = CrawlerLogger.get_logger("crawler.tasks")
        mock_get_logger.assert_called_once_with("structlog.crawler.tasks")
        self.assertIsInstance(logger, CrawlerLogger)
