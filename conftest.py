from __future__ import annotations

import importlib.util

# The emailer validates recipients with the pydantic email extra.
# Skip collecting its tests when email-validator is not installed.
if importlib.util.find_spec("email_validator") is None:
    collect_ignore_glob = [
        "services/emailer/tests/*",
        "tests/bdd/test_emailer_bdd.py",
        "tests/test_smoke_harness.py",
    ]
