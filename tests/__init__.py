# SPDX-License-Identifier: Apache-2.0
"""
textgen-sdk tests

Unit and behavior tests for the unified adapter layer, run against the
in-process mock backend and a fake OpenAI client.
"""
