# textgen_sdk/__init__.py
# SPDX-License-Identifier: Apache-2.0
"""Unified text-generation adapter SDK. Public API lives in textgen_sdk.ai."""

__version__ = "0.1.0"
