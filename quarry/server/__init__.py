# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Quarry API Server module."""

from quarry.server.app import create_app
from quarry.server.config import ServerConfig

__all__ = ["create_app", "ServerConfig"]
