# SPDX-License-Identifier: Apache-2.0
"""
Run the adapter test suite with a coverage report for textgen_sdk.ai.

Usage:
    python -m tests.ai.run_conformance
"""

import os

import pytest


def main() -> int:
    here = os.path.abspath(os.path.dirname(__file__))
    os.chdir(os.path.dirname(os.path.dirname(here)))
    return pytest.main(
        [
            "tests/ai",
            "-v",
            "--cov=textgen_sdk.ai",
            "--cov-report=term",
            "--cov-report=html:ai_coverage_report",
        ]
    )


if __name__ == "__main__":
    raise SystemExit(main())
