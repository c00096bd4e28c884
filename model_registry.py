# model_registry.py
# Fitted classifiers stored as joblib artifacts: <models_dir>/<model_id>.joblib

from __future__ import annotations

import logging
import os
import re
from typing import List, Optional

import joblib

from report_config import MODELS_DIR
from report_errors import ModelNotFoundError

_log = logging.getLogger(__name__)

ARTIFACT_EXT = ".joblib"
_MODEL_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")


def _check_model_id(model_id: str) -> str:
    if not isinstance(model_id, str) or not _MODEL_ID_RE.match(model_id):
        raise ValueError(f"Invalid model id {model_id!r}: use letters, digits, '_', '-' or '.'")
    return model_id


def _final_estimator(handle):
    # Pipelines: name the model after the last step
    steps = getattr(handle, "steps", None)
    if steps:
        return steps[-1][1]
    return handle


def default_model_id(handle) -> str:
    """Class name of the final estimator plus a short content hash, e.g. ``LogisticRegression_3fa2c1d0``."""
    name = type(_final_estimator(handle)).__name__
    return f"{name}_{joblib.hash(handle)[:8]}"


def load_model(path: str):
    """Load a fitted binary classifier; it must expose ``predict_proba``."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model artifact not found: {path}")
    handle = joblib.load(path)
    if not hasattr(handle, "predict_proba"):
        raise TypeError(f"{path} does not hold a probabilistic classifier (no predict_proba)")
    return handle


def save_model(handle, directory: str = MODELS_DIR, model_id: Optional[str] = None) -> str:
    model_id = _check_model_id(default_model_id(handle) if model_id is None else model_id)
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, model_id + ARTIFACT_EXT)
    joblib.dump(handle, path)
    _log.info("Saved model %s -> %s", model_id, path)
    return path


class ModelRegistry:
    """Model ids mapped onto artifact files in one directory."""

    def __init__(self, models_dir: str = MODELS_DIR):
        self.models_dir = models_dir

    def __repr__(self) -> str:
        return f"ModelRegistry({self.models_dir!r})"

    def path_for(self, model_id: str) -> str:
        return os.path.join(self.models_dir, _check_model_id(model_id) + ARTIFACT_EXT)

    def list_model_ids(self) -> List[str]:
        if not os.path.isdir(self.models_dir):
            return []
        ids = [f[: -len(ARTIFACT_EXT)] for f in os.listdir(self.models_dir) if f.endswith(ARTIFACT_EXT)]
        return sorted(ids)

    def __contains__(self, model_id: str) -> bool:
        return os.path.exists(self.path_for(model_id))

    def get_model(self, model_id: str):
        path = self.path_for(model_id)
        if not os.path.exists(path):
            raise ModelNotFoundError(f"No artifact for model {model_id!r} in {self.models_dir}")
        return load_model(path)

    def save_model(self, handle, model_id: Optional[str] = None) -> str:
        return save_model(handle, self.models_dir, model_id)
