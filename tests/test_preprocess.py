"""
Tests for the upstream preprocessing layer.

Covers:
1. Job array parsing and task selection
2. Tool command lines (STAR, fastqc, fastp, samtools, featureCounts)
3. Path layout under the working directory
4. ToolRunner dry runs and failure handling (no tool is ever executed)
"""

import subprocess
from pathlib import Path

import pytest

from gdtseq.preprocess import (
    JobArrayError,
    PipelineLayout,
    SampleJob,
    StepFailedError,
    ToolNotFoundError,
    ToolRunner,
    ToolSettings,
    build_star_index,
    process_sample,
    quantify,
    read_job_array,
    resolve_task_id,
    run_all_samples,
    select_job,
)
from gdtseq.preprocess.commands import (
    StarAlignFilters,
    fastp_command,
    fastqc_command,
    featurecounts_command,
    samtools_index_command,
    star_align_command,
    star_index_command,
)


@pytest.fixture
def jobs_file(tmp_path):
    path = tmp_path / "jobs_list"
    path.write_text(
        "Number5,Number5_S16_R1_001.fastq.gz\r\n"
        "\n"
        " Number6 , Number6_S17_R1_001.fastq.gz\n"
        "Number7,Number7_S18_R1_001.fastq.gz\n"
    )
    return path


@pytest.fixture
def layout(tmp_path):
    return PipelineLayout(working_path=tmp_path)


# =============================================================================
# Job array
# =============================================================================

class TestJobArray:

    def test_reads_lines_in_order(self, jobs_file):
        jobs = read_job_array(jobs_file)
        assert [j.sample_id for j in jobs] == ["Number5", "Number6", "Number7"]
        assert jobs[1].fastq_file == "Number6_S17_R1_001.fastq.gz"

    def test_derived_names(self):
        job = SampleJob("Number5", "Number5_S16_R1_001.fastq.gz")
        assert job.fastq_base == "Number5_S16_R1_001"
        assert job.trimmed_name == "Number5_S16_R1_001_trimmed.fastq.gz"
        assert job.bam_name == "Number5.sorted.bam"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_job_array(tmp_path / "nope")

    def test_malformed_line(self, tmp_path):
        path = tmp_path / "jobs"
        path.write_text("Number5,a.fastq.gz\nNumber6\n")
        with pytest.raises(JobArrayError, match=":2:"):
            read_job_array(path)

    def test_duplicate_sample(self, tmp_path):
        path = tmp_path / "jobs"
        path.write_text("A,a.fastq.gz\nA,b.fastq.gz\n")
        with pytest.raises(JobArrayError, match="duplicate"):
            read_job_array(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "jobs"
        path.write_text("\n\n")
        with pytest.raises(JobArrayError, match="empty"):
            read_job_array(path)

    def test_task_id_from_environment(self):
        assert resolve_task_id(env={"SGE_TASK_ID": "2"}) == 2

    def test_explicit_task_id_wins(self):
        assert resolve_task_id(3, env={"SGE_TASK_ID": "2"}) == 3

    @pytest.mark.parametrize("env", [{}, {"SGE_TASK_ID": "undefined"}, {"SGE_TASK_ID": "x"},
                                     {"SGE_TASK_ID": "0"}])
    def test_invalid_task_id(self, env):
        with pytest.raises(JobArrayError):
            resolve_task_id(env=env)

    def test_select_job_is_one_based(self, jobs_file):
        jobs = read_job_array(jobs_file)
        assert select_job(jobs, 1).sample_id == "Number5"
        assert select_job(jobs, 3).sample_id == "Number7"
        with pytest.raises(JobArrayError, match="out of range"):
            select_job(jobs, 4)


# =============================================================================
# Command lines
# =============================================================================

class TestCommands:

    def test_star_index(self):
        cmd = star_index_command(Path("idx"), Path("g.fa"), Path("a.gtf"))
        assert cmd[0] == "STAR"
        assert cmd[cmd.index("--runThreadN") + 1] == "32"
        assert cmd[cmd.index("--sjdbOverhang") + 1] == "49"
        assert cmd[cmd.index("--runMode") + 1] == "genomeGenerate"

    def test_star_align_filters_and_gzip(self):
        cmd = star_align_command(Path("idx"), Path("r.fastq.gz"), Path("bam/S1"))
        assert cmd[cmd.index("--outFileNamePrefix") + 1] == "bam/S1/"
        assert cmd[cmd.index("--outFilterScoreMinOverLread") + 1] == "0.3"
        assert cmd[cmd.index("--outFilterMatchNminOverLread") + 1] == "0.3"
        assert cmd[cmd.index("--outFilterMultimapNmax") + 1] == "20"
        assert cmd[cmd.index("--outReadsUnmapped") + 1] == "Fastx_failed"
        assert cmd[cmd.index("--readFilesCommand") + 1] == "zcat"
        assert cmd[-3:] == ["--outSAMtype", "BAM", "SortedByCoordinate"]

    def test_star_align_plain_fastq(self):
        filters = StarAlignFilters(multimap_nmax=1)
        cmd = star_align_command(Path("idx"), Path("r.fastq"), Path("out/"), filters=filters)
        assert "--readFilesCommand" not in cmd
        assert cmd[cmd.index("--outFileNamePrefix") + 1] == "out/"
        assert cmd[cmd.index("--outFilterMultimapNmax") + 1] == "1"

    def test_qc_trim_index(self):
        assert fastqc_command(Path("r.fq"), Path("qc"), 4) == ["fastqc", "r.fq", "-o", "qc", "-t", "4"]
        assert fastp_command(Path("in"), Path("out"), Path("r.html"), Path("r.json")) == [
            "fastp", "-i", "in", "-o", "out", "-h", "r.html", "-j", "r.json",
        ]
        assert samtools_index_command(Path("a.bam")) == ["samtools", "index", "a.bam"]

    def test_featurecounts(self):
        cmd = featurecounts_command(Path("a.gtf"), Path("fc.txt"), ["A.sorted.bam", "B.sorted.bam"])
        assert cmd == ["featureCounts", "-T", "16", "-a", "a.gtf", "-o", "fc.txt",
                       "A.sorted.bam", "B.sorted.bam"]

    def test_featurecounts_needs_bams(self):
        with pytest.raises(ValueError):
            featurecounts_command(Path("a.gtf"), Path("fc.txt"), [])


# =============================================================================
# Layout
# =============================================================================

class TestLayout:

    def test_defaults_under_working_path(self, tmp_path, layout):
        assert layout.gtf == tmp_path / "ref" / "gencode.v32.primary_assembly.annotation.gtf"
        assert layout.star_index == tmp_path / "STAR_idx"
        assert layout.jobs_list == tmp_path / "jobs_list"
        assert layout.counts_file == tmp_path / "data" / "expr" / "featureCounts.txt"

    def test_per_sample_paths(self, tmp_path, layout):
        job = SampleJob("S1", "S1_R1_001.fastq.gz")
        assert layout.raw_fastq(job) == tmp_path / "raw_data" / "S1_R1_001.fastq.gz"
        assert layout.trimmed_fastq(job) == tmp_path / "reads" / "S1_R1_001_trimmed.fastq.gz"
        assert layout.fastp_reports(job)[1].name == "S1.json"
        assert layout.star_bam(job) == tmp_path / "bam" / "S1" / "Aligned.sortedByCoord.out.bam"
        assert layout.sorted_bam(job) == tmp_path / "bam" / "S1.sorted.bam"

    def test_ensure_dirs(self, layout):
        layout.ensure_dirs()
        assert layout.bam_dir.is_dir()
        assert layout.post_qc_dir.is_dir()


# =============================================================================
# Runner
# =============================================================================

class TestToolRunner:

    def test_dry_run_records_without_lookup(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("nothing may run in dry-run mode")

        monkeypatch.setattr(subprocess, "run", fail)
        monkeypatch.setattr("shutil.which", fail)

        runner = ToolRunner(dry_run=True)
        runner.run("fastp", ["fastp", "-i", "x"])
        assert runner.history[0].step == "fastp"
        assert runner.history[0].executed is False

    def test_missing_tool(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda exe: None)
        with pytest.raises(ToolNotFoundError, match="STAR"):
            ToolRunner().run("STAR index", ["STAR", "--version"])

    def test_failure_raises_step_failed(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda exe: f"/usr/bin/{exe}")

        def failing(cmd, cwd=None, check=False):
            raise subprocess.CalledProcessError(3, cmd)

        monkeypatch.setattr(subprocess, "run", failing)
        with pytest.raises(StepFailedError) as excinfo:
            ToolRunner().run("fastp", ["fastp", "-i", "x"])
        assert excinfo.value.returncode == 3
        assert excinfo.value.step == "fastp"

    def test_success_passes_cwd(self, monkeypatch, tmp_path):
        calls = []
        monkeypatch.setattr("shutil.which", lambda exe: f"/usr/bin/{exe}")
        monkeypatch.setattr(subprocess, "run", lambda cmd, cwd=None, check=False: calls.append((cmd, cwd)))

        runner = ToolRunner()
        runner.run("featureCounts", ["featureCounts", "-a", Path("a.gtf")], cwd=tmp_path)
        assert calls == [(["featureCounts", "-a", "a.gtf"], str(tmp_path))]
        assert runner.history[0].executed is True


class TestSteps:

    def test_process_sample_dry_run_order(self, layout):
        runner = ToolRunner(dry_run=True)
        job = SampleJob("S1", "S1_R1_001.fastq.gz")
        bam = process_sample(job, layout, runner)

        assert bam == layout.sorted_bam(job)
        assert [r.step for r in runner.history] == [
            "preQC", "fastp", "postQC", "STAR align", "samtools index",
        ]

    def test_process_sample_without_qc(self, layout):
        runner = ToolRunner(dry_run=True)
        process_sample(SampleJob("S1", "S1.fastq.gz"), layout, runner, ToolSettings(run_qc=False))
        assert [r.step for r in runner.history] == ["fastp", "STAR align", "samtools index"]

    def test_process_sample_missing_fastq(self, layout, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda exe: f"/usr/bin/{exe}")
        with pytest.raises(FileNotFoundError, match="Raw FASTQ"):
            process_sample(SampleJob("S1", "S1.fastq.gz"), layout, ToolRunner())

    def test_process_sample_renames_star_bam(self, layout, monkeypatch):
        job = SampleJob("S1", "S1.fastq.gz")
        layout.raw_reads_dir.mkdir(parents=True)
        layout.raw_fastq(job).write_bytes(b"")

        def fake_run(cmd, cwd=None, check=False):
            if cmd[0] == "STAR":
                layout.star_bam(job).write_bytes(b"BAM")

        monkeypatch.setattr("shutil.which", lambda exe: f"/usr/bin/{exe}")
        monkeypatch.setattr(subprocess, "run", fake_run)

        bam = process_sample(job, layout, ToolRunner())
        assert bam.read_bytes() == b"BAM"
        assert not layout.star_bam(job).exists()

    def test_build_index_requires_references(self, layout, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda exe: f"/usr/bin/{exe}")
        with pytest.raises(FileNotFoundError, match="Reference"):
            build_star_index(layout, ToolRunner())

    def test_build_index_dry_run(self, layout):
        runner = ToolRunner(dry_run=True)
        assert build_star_index(layout, runner, ToolSettings(index_threads=8)) == layout.star_index
        cmd = runner.history[0].cmd
        assert cmd[cmd.index("--runThreadN") + 1] == "8"

    def test_quantify_runs_in_bam_dir(self, layout, jobs_file):
        runner = ToolRunner(dry_run=True)
        jobs = read_job_array(jobs_file)
        assert quantify(jobs, layout, runner) == layout.counts_file

        record = runner.history[0]
        assert record.cwd == layout.bam_dir
        assert record.cmd[-3:] == ("Number5.sorted.bam", "Number6.sorted.bam", "Number7.sorted.bam")

    def test_quantify_missing_bams(self, layout, jobs_file, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda exe: f"/usr/bin/{exe}")
        with pytest.raises(FileNotFoundError, match="3 BAM"):
            quantify(read_job_array(jobs_file), layout, ToolRunner())

    def test_run_all_samples(self, layout, jobs_file):
        runner = ToolRunner(dry_run=True)
        bams = run_all_samples(read_job_array(jobs_file), layout, runner, ToolSettings(run_qc=False))
        assert [b.name for b in bams] == ["Number5.sorted.bam", "Number6.sorted.bam", "Number7.sorted.bam"]
        assert len(runner.history) == 9

    def test_quantify_relative_working_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        gtf = tmp_path / "bulk" / "ref" / "gencode.v32.primary_assembly.annotation.gtf"
        gtf.parent.mkdir(parents=True)
        gtf.write_text("")

        layout = PipelineLayout(working_path=Path("bulk"))
        runner = ToolRunner(dry_run=True)
        quantify([SampleJob("S1", "S1.fastq.gz")], layout, runner)

        record = runner.history[0]
        cmd = list(record.cmd)
        assert Path(record.cwd).is_absolute()
        assert (Path(record.cwd) / cmd[cmd.index("-a") + 1]).exists()
        assert Path(record.cwd) / cmd[cmd.index("-o") + 1] == tmp_path / "bulk" / "data" / "expr" / "featureCounts.txt"
