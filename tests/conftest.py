"""Test environment: temp data dir, loopback broker, in-memory store."""

import os
import tempfile

# Setup environment for testing (before any devconfirm import)
os.environ["DEVCONFIRM_DATA_DIR"] = tempfile.mkdtemp()
os.environ["DEVCONFIRM_DB_PATH"] = os.path.join(os.environ["DEVCONFIRM_DATA_DIR"], "test.db")
os.environ["DEVCONFIRM_TRANSPORT"] = "loopback"
os.environ["DEVCONFIRM_STORE_BACKEND"] = "memory"
