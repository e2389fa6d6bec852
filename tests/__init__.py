# SPDX-License-Identifier: MIT
"""Test suite for cache-mirror."""
