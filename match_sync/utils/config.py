"""
Stage Association Mapping

Load the pipeline stage -> CRM association id mapping from YAML.

Example file:

    stages:
      Sent to Buyer: ${GHL_ASSOC_SENT}
      Buyer Responded: 693944eb0c32be3d486d83c0
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def load_stage_associations(path: Optional[Union[str, Path]]) -> Dict[str, str]:
    """
    Load the stage mapping file.

    A missing path returns an empty mapping (the resolver then falls back
    to the CRM association list). Unresolved ${VAR} references and empty
    values are dropped.

    Args:
        path: Path to the YAML file

    Returns:
        Mapping of stage name to association id
    """
    if not path:
        return {}

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Stage association file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Stage association file must be a mapping: {path}")

    stages = data.get('stages', data)
    if not isinstance(stages, dict):
        raise ConfigurationError(f"'stages' must be a mapping in {path}")

    mapping = {}
    for stage, association_id in _expand_env_vars(stages).items():
        if not association_id or str(association_id).startswith('${'):
            logger.debug(f"No association id for stage {stage!r} in {path}")
            continue
        mapping[str(stage)] = str(association_id)

    logger.info(f"Loaded {len(mapping)} stage associations from {path}")
    return mapping


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} references in config values."""
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str) and obj.startswith('${') and obj.endswith('}'):
        var_name = obj[2:-1]
        return os.environ.get(var_name, obj)
    return obj
