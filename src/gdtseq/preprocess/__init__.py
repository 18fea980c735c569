"""
Upstream read processing: trimming, alignment and quantification.

Wraps fastqc, fastp, STAR, samtools and featureCounts. Per-sample work is
selected from a job array file by the scheduler's task id; see
:mod:`gdtseq.preprocess.jobs`.
"""

from gdtseq.preprocess.jobs import (
    JobArrayError,
    SampleJob,
    read_job_array,
    resolve_task_id,
    select_job,
)
from gdtseq.preprocess.layout import PipelineLayout
from gdtseq.preprocess.runner import (
    StepFailedError,
    ToolNotFoundError,
    ToolRunner,
    ToolSettings,
    build_star_index,
    process_sample,
    quantify,
    run_all_samples,
)

__all__ = [
    'JobArrayError',
    'SampleJob',
    'read_job_array',
    'resolve_task_id',
    'select_job',
    'PipelineLayout',
    'StepFailedError',
    'ToolNotFoundError',
    'ToolRunner',
    'ToolSettings',
    'build_star_index',
    'process_sample',
    'quantify',
    'run_all_samples',
]
