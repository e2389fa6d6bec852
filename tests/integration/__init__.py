# SPDX-License-Identifier: MIT
"""Integration tests for cache-mirror.

INTEGRATION TEST FILE: This directory contains tests that wire several real
components together (engine, retry buffer, SQLite store) against an
in-memory origin, verifying end-to-end workflows.
"""
