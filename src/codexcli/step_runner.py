"""Step-file runner.

Loads a step definition, runs it through the engine, writes a report.

Step definition (YAML or JSON):

    task_id: hello-001
    language: python
    code: |            # or `file: path/to/script.py`
      print("hello")
    workdir: ./scratch   # optional, default: directory of the step file
    max_attempts: 3      # optional
    timeout: 30          # optional, seconds
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import jsonschema
import yaml

from codexcli.engine import Engine
from codexcli.execution_state import HealingSession

logger = logging.getLogger(__name__)

STEP_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["task_id", "language"],
    "properties": {
        "task_id": {"type": "string", "minLength": 1, "pattern": r"^[\w.-]+$"},
        "language": {"type": "string", "minLength": 1},
        "code": {"type": "string"},
        "file": {"type": "string", "minLength": 1},
        "workdir": {"type": "string", "minLength": 1},
        "max_attempts": {"type": "integer", "minimum": 1},
        "timeout": {"type": "number", "exclusiveMinimum": 0},
    },
    "oneOf": [
        {"required": ["code"]},
        {"required": ["file"]},
    ],
    "additionalProperties": False,
}


class StepDefinitionError(ValueError):
    """Raised when a step file cannot be read or fails validation."""
    pass


def validate_step(data, filename: str = "step") -> List[str]:
    """
    Validate a parsed step definition against STEP_SCHEMA.

    Uses Draft7Validator.iter_errors() to collect all validation errors.
    """
    errors = []
    validator = jsonschema.Draft7Validator(STEP_SCHEMA)
    for error in validator.iter_errors(data):
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
        errors.append(f"{filename}: {error.message} at {path}")
    return errors


def load_step_definition(step_file: Path) -> dict:
    """
    Load and validate a step definition from YAML or JSON.

    Raises:
        StepDefinitionError: Unsupported extension, parse error, or schema violation
    """
    content = step_file.read_text()

    try:
        if step_file.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        elif step_file.suffix == ".json":
            data = json.loads(content)
        else:
            raise StepDefinitionError(f"Unsupported file type: {step_file.suffix}. Use .yaml, .yml, or .json")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise StepDefinitionError(f"Could not parse {step_file.name}: {e}") from e

    errors = validate_step(data, step_file.name)
    if errors:
        raise StepDefinitionError("Invalid step definition:\n  " + "\n  ".join(errors))

    return data


def resolve_step(step_def: dict, step_file: Path):
    """Return (code, workdir) for a step; relative paths are taken from the step file's directory."""
    base = step_file.parent
    workdir = base / step_def["workdir"] if "workdir" in step_def else base

    if "code" in step_def:
        code = step_def["code"]
    else:
        source = base / step_def["file"]
        if not source.is_file():
            raise StepDefinitionError(f"Source file not found: {source}")
        code = source.read_text()

    return code, workdir.resolve()


def write_execution_report(
    task_id: str,
    session: HealingSession,
    step_file: Path,
    output_dir: Path,
    start_time: datetime,
    end_time: datetime,
) -> Path:
    """
    Write a structured execution report to disk.

    Report format: JSON with the full attempt history.
    Filename: {task_id}_{timestamp}.json
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = end_time.strftime("%Y%m%d_%H%M%S")
    report_path = output_dir / f"{task_id}_{timestamp}.json"

    report = {
        "task_id": task_id,
        "step_file": str(step_file),
        **session.to_dict(),
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "duration_seconds": (end_time - start_time).total_seconds(),
    }

    report_path.write_text(json.dumps(report, indent=2))
    logger.info("Wrote execution report %s", report_path)
    return report_path


def run_step(
    engine: Engine,
    step_file: Path,
    output_dir: Optional[Path] = None,
):
    """
    Main entry point: load step, run it, optionally write a report.

    Args:
        engine: Engine to run the step with
        step_file: Path to step definition (YAML or JSON)
        output_dir: Directory for the JSON report (no report when None)

    Returns:
        (final HealingSession, report path or None)

    Raises:
        StepDefinitionError: Invalid step file
        EngineError: Unsupported language or environment creation failure
    """
    step_def = load_step_definition(step_file)
    code, workdir = resolve_step(step_def, step_file)

    start_time = datetime.now()
    session = engine.execute(
        step_def["language"],
        code,
        workdir,
        max_attempts=step_def.get("max_attempts"),
        timeout=step_def.get("timeout"),
    )
    end_time = datetime.now()

    report_path = None
    if output_dir is not None:
        report_path = write_execution_report(
            task_id=step_def["task_id"],
            session=session,
            step_file=step_file,
            output_dir=output_dir,
            start_time=start_time,
            end_time=end_time,
        )

    return session, report_path
