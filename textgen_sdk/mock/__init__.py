# textgen_sdk/mock/__init__.py
# SPDX-License-Identifier: Apache-2.0
"""Deterministic in-process backend for tests and examples."""

from textgen_sdk.mock.mock_ai_adapter import MockAIAdapter, MockTransport

__all__ = ["MockAIAdapter", "MockTransport"]
