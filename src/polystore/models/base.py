# PolyStore - Multi-Backend Data Store Connection Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Base Pydantic model configuration for all outward-facing models.

Health reports, pool snapshots and state transitions are handed to
collaborators that may serialize them straight into a status endpoint, so
they share one strict configuration: immutable, no extra fields, validated
on assignment.
"""

from beartype import beartype
from pydantic import BaseModel, ConfigDict


@beartype
class BaseModelConfig(BaseModel):
    """Base model with strict configuration for all report models.

    Enforces:
    - Immutability (frozen=True)
    - No extra fields allowed (extra="forbid")
    - Validation on assignment
    - Automatic whitespace stripping
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )
