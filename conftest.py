from __future__ import annotations

import importlib.util

# API and emailer models depend on optional pydantic email extras.
# Skip collecting their tests when email-validator is not installed.
if importlib.util.find_spec("email_validator") is None:
    collect_ignore_glob = [
        "services/api/tests/*",
        "services/emailer/tests/*",
        "tests/bdd/test_api_bdd.py",
        "tests/bdd/test_emailer_bdd.py",
        "tests/test_smoke_harness.py",
    ]
