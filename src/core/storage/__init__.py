# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Job registry."""

from src.core.storage.job_registry import JobRegistry

__all__ = ["JobRegistry"]
