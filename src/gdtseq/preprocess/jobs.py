"""
Job array handling for per-sample preprocessing.

The cluster runs one array task per sample. Each task reads a single line
of the job array file, selected by the 1-based ``SGE_TASK_ID``, in the form
``ID,file_name``:

    Number5,Number5_S16_R1_001.fastq.gz
    Number6,Number6_S17_R1_001.fastq.gz

The ID names every per-sample output (fastp reports, BAM, featureCounts
column); the file name is looked up under the raw read directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

__all__ = [
    'JobArrayError',
    'SampleJob',
    'read_job_array',
    'resolve_task_id',
    'select_job',
    'TASK_ID_ENV',
]

TASK_ID_ENV = "SGE_TASK_ID"


class JobArrayError(ValueError):
    """Job array file or task id is invalid."""


@dataclass(frozen=True)
class SampleJob:
    """
    One line of the job array file.

    Attributes:
        sample_id: Short sample name used for all outputs
        fastq_file: Raw FASTQ file name (relative to the raw read directory)
    """
    sample_id: str
    fastq_file: str

    @property
    def fastq_base(self) -> str:
        """File name up to the first dot (``Number5_S16_R1_001``)."""
        return Path(self.fastq_file).name.split(".", 1)[0]

    @property
    def trimmed_name(self) -> str:
        return f"{self.fastq_base}_trimmed.fastq.gz"

    @property
    def bam_name(self) -> str:
        return f"{self.sample_id}.sorted.bam"


def read_job_array(path: Path) -> list[SampleJob]:
    """
    Parse a job array file into SampleJob records, in file order.

    Blank lines are skipped; whitespace and carriage returns around fields
    are stripped.

    Args:
        path: Path to the ``ID,file_name`` file

    Returns:
        List of SampleJob, one per non-blank line

    Raises:
        FileNotFoundError: If path does not exist
        JobArrayError: On a malformed line or a duplicated sample id
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Job array file not found: {path}")

    jobs: list[SampleJob] = []
    seen: set[str] = set()

    for lineno, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = raw.replace("\r", "").strip()
        if not line:
            continue

        fields = [f.strip() for f in line.split(",")]
        if len(fields) != 2 or not all(fields):
            raise JobArrayError(
                f"{path}:{lineno}: expected 'ID,file_name', got {raw!r}"
            )

        sample_id, fastq_file = fields
        if sample_id in seen:
            raise JobArrayError(f"{path}:{lineno}: duplicate sample id {sample_id!r}")
        seen.add(sample_id)
        jobs.append(SampleJob(sample_id=sample_id, fastq_file=fastq_file))

    if not jobs:
        raise JobArrayError(f"Job array file is empty: {path}")

    return jobs


def resolve_task_id(
    explicit: Optional[int] = None,
    env: Optional[Mapping[str, str]] = None,
) -> int:
    """
    Determine the 1-based array task id.

    An explicit value (``--task-id``) wins over the ``SGE_TASK_ID``
    environment variable.

    Raises:
        JobArrayError: If neither is set, or the value is not an integer >= 1
    """
    if explicit is not None:
        value: object = explicit
    else:
        env = os.environ if env is None else env
        value = env.get(TASK_ID_ENV)
        if value is None or str(value).strip() in ("", "undefined"):
            raise JobArrayError(
                f"No task id: pass --task-id or run as an array job ({TASK_ID_ENV} unset)"
            )

    try:
        task_id = int(str(value).strip())
    except ValueError as e:
        raise JobArrayError(f"Task id must be an integer, got {value!r}") from e

    if task_id < 1:
        raise JobArrayError(f"Task id must be >= 1, got {task_id}")
    return task_id


def select_job(jobs: list[SampleJob], task_id: int) -> SampleJob:
    """Return the job on line ``task_id`` (1-based), like ``awk "NR==$SGE_TASK_ID"``."""
    if task_id < 1 or task_id > len(jobs):
        raise JobArrayError(
            f"Task {task_id} out of range: job array has {len(jobs)} samples"
        )
    return jobs[task_id - 1]
