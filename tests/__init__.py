# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Tests for the Jenkins plugin."""
