"""Shared type aliases for the mvglm_posterior package."""

from typing import Any

import numpy as np
import pandas as pd

# Array-like inputs accepted at the data boundary.
ArrayLike = np.ndarray | pd.DataFrame | pd.Series | list[float]

# Constrained parameters keyed by site name (JAX arrays at evaluation time).
Params = dict[str, Any]
