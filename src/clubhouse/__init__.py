# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Clubhouse: a small session-based membership website."""

__version__ = "0.1.0"
