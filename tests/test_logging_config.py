import helpers  # noqa: F401  (path bootstrap)

import json
import logging
import os
import shutil
import tempfile
import unittest

from storefront.logging_config import JsonFormatter, configure_logging


class TestJsonLogging(unittest.TestCase):
    def test_context_fields_are_merged(self):
        record = logging.LogRecord("storefront.dao", logging.ERROR, __file__, 1, "Order insert failed", None, None)
        record.user_email = "carol@example.com"
        record.state = "Ordering"
        record.extra = {"order_id": 4}
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["level"], "ERROR")
        self.assertEqual(payload["message"], "Order insert failed")
        self.assertEqual(payload["user_email"], "carol@example.com")
        self.assertEqual(payload["state"], "Ordering")
        self.assertEqual(payload["order_id"], 4)

    def test_configure_logging_writes_file(self):
        log_dir = tempfile.mkdtemp()
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging(log_dir)
            logging.getLogger("storefront.test").info("hello", extra={"extra": {"answer": 42}})
            for handler in root.handlers:
                handler.flush()
            with open(os.path.join(log_dir, "storefront.log"), encoding="utf-8") as fh:
                entry = json.loads(fh.readlines()[-1])
            self.assertEqual(entry["answer"], 42)
        finally:
            for handler in list(root.handlers):
                handler.close()
                root.removeHandler(handler)
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
            shutil.rmtree(log_dir, ignore_errors=True)


if __name__ == "__main__":
    unittest.main()
