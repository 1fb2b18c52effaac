import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .. import constants
from ..datacls import BuildResult
from ..exceptions import LayerBuildError, StepFailure
from .pipeline import output_tail

logger = logging.getLogger(__name__)


def report_data(name: str, result: BuildResult, labels: Optional[Dict[str, str]] = None,
                tag: Optional[str] = None, error: Optional[LayerBuildError] = None) -> Dict[str, Any]:
    """Plain mapping describing a finished (or aborted) build."""
    snapshot = result.snapshot
    data: Dict[str, Any] = {
        'name': name,
        'state': result.state.value,
        'base': {
            'image': snapshot.base.reference,
            'id': snapshot.base_id,
        },
        'layers': [
            {
                'index': layer.index,
                'step': layer.step,
                'id': layer.digest,
                'parent': layer.parent,
                'created_by': list(layer.created_by),
                'changes': len(layer.changes),
            }
            for layer in snapshot.layers
        ],
        'trace': [
            {
                'index': entry.index,
                'step': entry.name,
                'status': entry.status.value,
                'exit_status': entry.exit_status,
                'duration': round(entry.duration, 3),
            }
            for entry in result.trace
        ],
    }
    if labels:
        data['labels'] = dict(labels)
    if result.succeeded:
        data['image'] = {'id': snapshot.active, 'tag': tag}
    if result.failed_step is not None:
        data['failed_step'] = result.failed_step
    if error is not None:
        data['error'] = str(error)
        if isinstance(error, StepFailure) and error.output:
            data['output'] = output_tail(error.output)
    return data


def write_report(path: Path, data: Dict[str, Any]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)
    logger.info(f"[Report] Build report written to '{path}'.")
    return path


def report_path(output_dir: Path, name: str) -> Path:
    return Path(output_dir) / name / constants.REPORT_FILENAME
