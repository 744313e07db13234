# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""infraplan - dependency-ordered plan and apply for declared resources."""

__version__ = "1.0.0"
