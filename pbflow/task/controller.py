"""Workflow tasks that compose reference preparation and pbrun calls.

Each workflow task corresponds to one pipeline in the registry. It requires
the indexed reference (and known-sites VCFs when BQSR applies), evaluates the
pipeline's optional branches, and yields the matching pbrun task.
"""

import sys
from collections.abc import Generator
from socket import gethostname
from typing import Any

import luigi

from .core import PbflowTask
from .pbrun import (
    DEFAULT_CONTAINER_IMAGE,
    Deepvariant,
    DeepvariantGermline,
    Fq2bam,
    Germline,
    Haplotypecaller,
    Mutectcaller,
    PbrunTask,
)
from .resource import FetchKnownSitesVcfs, FetchReferenceFasta


class PrintEnvVersions(PbflowTask):
    """Print versions of the host environment and the pbrun container.

    Parameters:
        command_paths: List of command executables to check versions.
        container_image: Container image whose pbrun version is printed.
        container_runtime: ``docker`` or ``none``.
        docker: Path to the docker executable.
        run_id: Identifier for this run (defaults to hostname).
        sh_config: Shell configuration parameters.
    """

    command_paths = luigi.ListParameter(default=[])
    container_image = luigi.Parameter(default=DEFAULT_CONTAINER_IMAGE)
    container_runtime = luigi.Parameter(default="docker")
    docker = luigi.Parameter(default="docker")
    run_id = luigi.Parameter(default=gethostname())
    sh_config = luigi.DictParameter(default={})
    __is_completed: bool = False

    def complete(self) -> bool:
        return self.__is_completed

    def run(self) -> None:
        self.print_log(f"Print environment versions:\t{self.run_id}")
        self.setup_shell(
            run_id=self.run_id, commands=self.command_paths, **self.sh_config
        )
        self.print_env_versions()
        if self.container_runtime == "docker":
            self.run_shell(
                args=[
                    f"{self.docker} image inspect --format '{{{{.Id}}}}'"
                    f" {self.container_image}",
                    f"{self.docker} run --rm {self.container_image} pbrun version",
                ]
            )
        self.__is_completed = True


class PipelineWorkflow(luigi.Task):
    """Base class of the per-pipeline workflow tasks.

    Parameters:
        fa_path: Path to the reference FASTA file.
        sample_name: Sample identifier.
        dest_dir_path: Output directory for this sample.
        interval_file_path: Optional interval file.
        container_image: Container image providing pbrun.
        container_runtime: ``docker`` or ``none``.
        docker: Path to the docker executable.
        pbrun: pbrun command inside the container.
        samtools: Path to the samtools executable.
        bwa: Path to the BWA executable.
        bgzip: Path to the bgzip executable.
        tabix: Path to the tabix executable.
        num_gpus: Number of GPUs to use.
        n_cpu: Number of CPU threads to use.
        memory_mb: Memory allocation in MB.
        sh_config: Shell configuration parameters.
    """

    fa_path = luigi.Parameter()
    sample_name = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    interval_file_path = luigi.Parameter(default="")
    container_image = luigi.Parameter(default=DEFAULT_CONTAINER_IMAGE)
    container_runtime = luigi.Parameter(default="docker")
    docker = luigi.Parameter(default="docker")
    pbrun = luigi.Parameter(default="pbrun")
    samtools = luigi.Parameter(default="samtools")
    bwa = luigi.Parameter(default="bwa")
    bgzip = luigi.Parameter(default="bgzip")
    tabix = luigi.Parameter(default="tabix")
    num_gpus = luigi.IntParameter(default=1)
    n_cpu = luigi.IntParameter(default=1)
    memory_mb = luigi.FloatParameter(default=4096)
    sh_config = luigi.DictParameter(default={})
    priority = luigi.IntParameter(default=sys.maxsize)
    bwa_index: bool = False

    def requires(self) -> list[luigi.Task]:
        return [
            FetchReferenceFasta(
                fa_path=self.fa_path,
                bwa_index=self.bwa_index,
                samtools=self.samtools,
                bwa=self.bwa,
                sh_config=self.sh_config,
            )
        ]

    def build_pbrun_task(self) -> PbrunTask:
        raise NotImplementedError

    def generate_pbrun_kwargs(self) -> dict[str, Any]:
        return {
            "fa_path": self.fa_path,
            "sample_name": self.sample_name,
            "dest_dir_path": self.dest_dir_path,
            "interval_file_path": self.interval_file_path,
            "container_image": self.container_image,
            "container_runtime": self.container_runtime,
            "docker": self.docker,
            "pbrun": self.pbrun,
            "num_gpus": self.num_gpus,
            "n_cpu": self.n_cpu,
            "memory_mb": self.memory_mb,
            "sh_config": self.sh_config,
        }

    def output(self) -> list[luigi.Target]:
        return luigi.task.flatten(self.build_pbrun_task().output())

    def run(self) -> Generator[luigi.Task, None, None]:
        yield self.build_pbrun_task()


class FastqWorkflow(PipelineWorkflow):
    """Workflow over a FASTQ pair; the reference needs a BWA index.

    Parameters:
        fq_paths: Paths to the read 1 and read 2 FASTQ files.
        read_group: Read group fields for the SAM header.
        low_memory: Run pbrun in low-memory mode.
    """

    fq_paths = luigi.ListParameter()
    read_group = luigi.DictParameter(default={})
    low_memory = luigi.BoolParameter(default=False)
    bwa_index = True

    def generate_pbrun_kwargs(self) -> dict[str, Any]:
        return {
            **super().generate_pbrun_kwargs(),
            "fq_paths": self.fq_paths,
            "read_group": self.read_group,
            "low_memory": self.low_memory,
        }


class BqsrWorkflow(FastqWorkflow):
    """FASTQ workflow with an optional base quality recalibration branch.

    The branch is taken only when ``run_bqsr`` is set and known-sites VCFs are
    given; only then are the VCFs prepared and passed to pbrun.

    Parameters:
        known_sites_vcf_paths: Known variant VCF files for BQSR.
        run_bqsr: Recalibrate base qualities when known sites are given.
    """

    known_sites_vcf_paths = luigi.ListParameter(default=[])
    run_bqsr = luigi.BoolParameter(default=True)

    @property
    def do_bqsr(self) -> bool:
        return bool(self.run_bqsr and self.known_sites_vcf_paths)

    def requires(self) -> list[luigi.Task]:
        return [
            *super().requires(),
            FetchKnownSitesVcfs(
                known_sites_vcf_paths=(
                    self.known_sites_vcf_paths if self.do_bqsr else []
                ),
                bgzip=self.bgzip,
                tabix=self.tabix,
                n_cpu=self.n_cpu,
                sh_config=self.sh_config,
            ),
        ]

    def generate_pbrun_kwargs(self) -> dict[str, Any]:
        return {
            **super().generate_pbrun_kwargs(),
            "known_sites_vcf_paths": [i[0].path for i in self.input()[1]],
            "run_bqsr": self.do_bqsr,
        }


class Fq2bamWorkflow(BqsrWorkflow):
    """Align a FASTQ pair into an analysis-ready BAM."""

    def build_pbrun_task(self) -> PbrunTask:
        return Fq2bam(**self.generate_pbrun_kwargs())


class GermlineWorkflow(BqsrWorkflow):
    """Align a FASTQ pair and call germline variants with HaplotypeCaller.

    Parameters:
        gvcf: Emit a gVCF instead of a VCF.
    """

    gvcf = luigi.BoolParameter(default=False)

    def build_pbrun_task(self) -> PbrunTask:
        return Germline(**self.generate_pbrun_kwargs(), gvcf=self.gvcf)


class DeepvariantGermlineWorkflow(FastqWorkflow):
    """Align a FASTQ pair and call germline variants with DeepVariant.

    Parameters:
        gvcf: Emit a gVCF instead of a VCF.
    """

    gvcf = luigi.BoolParameter(default=False)

    def build_pbrun_task(self) -> PbrunTask:
        return DeepvariantGermline(**self.generate_pbrun_kwargs(), gvcf=self.gvcf)


class HaplotypecallerWorkflow(PipelineWorkflow):
    """Call germline variants from a BAM with HaplotypeCaller.

    Parameters:
        input_bam_path: Path to the indexed BAM file.
        recal_file_path: Optional BQSR report to apply while calling.
        gvcf: Emit a gVCF instead of a VCF.
    """

    input_bam_path = luigi.Parameter()
    recal_file_path = luigi.Parameter(default="")
    gvcf = luigi.BoolParameter(default=False)

    def build_pbrun_task(self) -> PbrunTask:
        return Haplotypecaller(
            **self.generate_pbrun_kwargs(),
            input_bam_path=self.input_bam_path,
            recal_file_path=self.recal_file_path,
            gvcf=self.gvcf,
        )


class DeepvariantWorkflow(PipelineWorkflow):
    """Call germline variants from a BAM with DeepVariant.

    Parameters:
        input_bam_path: Path to the indexed BAM file.
        gvcf: Emit a gVCF instead of a VCF.
    """

    input_bam_path = luigi.Parameter()
    gvcf = luigi.BoolParameter(default=False)

    def build_pbrun_task(self) -> PbrunTask:
        return Deepvariant(
            **self.generate_pbrun_kwargs(),
            input_bam_path=self.input_bam_path,
            gvcf=self.gvcf,
        )


class SomaticWorkflow(PipelineWorkflow):
    """Call somatic variants in tumor-only or tumor-normal mode.

    ``sample_name`` is the tumor sample name.

    Parameters:
        tumor_bam_path: Path to the tumor BAM file.
        normal_bam_path: Optional path to the matched normal BAM file.
        normal_name: Sample name of the normal.
    """

    tumor_bam_path = luigi.Parameter()
    normal_bam_path = luigi.Parameter(default="")
    normal_name = luigi.Parameter(default="normal")

    def build_pbrun_task(self) -> PbrunTask:
        return Mutectcaller(
            **self.generate_pbrun_kwargs(),
            tumor_bam_path=self.tumor_bam_path,
            normal_bam_path=self.normal_bam_path,
            normal_name=self.normal_name,
        )


WORKFLOW_TASKS: dict[str, type[PipelineWorkflow]] = {
    "fq2bam": Fq2bamWorkflow,
    "germline": GermlineWorkflow,
    "deepvariant_germline": DeepvariantGermlineWorkflow,
    "haplotypecaller": HaplotypecallerWorkflow,
    "deepvariant": DeepvariantWorkflow,
    "somatic": SomaticWorkflow,
}


if __name__ == "__main__":
    luigi.run()
