# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""HTTP API for infraplan."""
