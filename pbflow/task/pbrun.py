"""pbrun tasks for the pbflow pipelines.

Each task builds one ``pbrun <tool>`` command line, sizes its runtime from the
pipeline registry, and dispatches it inside the configured container image.
"""

import logging
from abc import abstractmethod
from pathlib import Path

import luigi

from .core import PbflowTask
from .runtime import check_disk_space, compute_runtime, fetch_pipeline_definition

DEFAULT_CONTAINER_IMAGE = "nvcr.io/nvidia/clara/clara-parabricks:4.3.1-1"


class PbrunTask(PbflowTask):
    """Abstract Luigi task that runs a single pbrun tool.

    Subclasses declare ``pipeline_name`` and implement the argument builder
    and the list of input files.

    Parameters:
        fa_path: Path to the indexed reference FASTA file.
        sample_name: Sample identifier used for output file names.
        dest_dir_path: Output directory.
        interval_file_path: Optional interval file restricting the analysis.
        container_image: Container image providing pbrun.
        container_runtime: ``docker`` or ``none`` (pbrun on the host).
        docker: Path to the docker executable.
        pbrun: pbrun command inside the container.
        num_gpus: Number of GPUs to use.
        n_cpu: CPU limit for the container.
        memory_mb: Memory limit for the container in MB.
        add_pbrun_args: Additional arguments appended to the pbrun command.
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
    num_gpus = luigi.IntParameter(default=1)
    n_cpu = luigi.IntParameter(default=1)
    memory_mb = luigi.FloatParameter(default=4096)
    add_pbrun_args = luigi.ListParameter(default=[])
    sh_config = luigi.DictParameter(default={})
    pipeline_name: str = ""
    priority = 50

    @abstractmethod
    def build_pbrun_args(self) -> list[str]:
        """Return the tool-specific pbrun arguments."""
        raise NotImplementedError

    @abstractmethod
    def list_input_paths(self) -> list[str]:
        """Return the input files read by pbrun."""
        raise NotImplementedError

    def generate_pbrun_args(self) -> list[str]:
        """Return the complete pbrun command as an argument list."""
        return [
            self.pbrun,
            fetch_pipeline_definition(self.pipeline_name)["tool"],
            "--ref",
            str(Path(self.fa_path).resolve()),
            *self.build_pbrun_args(),
            *(
                ["--interval-file", str(Path(self.interval_file_path).resolve())]
                if self.interval_file_path
                else []
            ),
            "--num-gpus",
            str(self.num_gpus),
            "--tmp-dir",
            str(self.tmp_dir),
            *self.add_pbrun_args,
        ]

    @property
    def dest_dir(self) -> Path:
        return Path(self.dest_dir_path).resolve()

    @property
    def tmp_dir(self) -> Path:
        return self.dest_dir.joinpath(f".{self.sample_name}.pbrun.tmp")

    def compute_runtime(self) -> dict[str, int]:
        return compute_runtime(
            sizing=fetch_pipeline_definition(self.pipeline_name)["sizing"],
            input_paths=[self.fa_path, *self.list_input_paths()],
            num_gpus=self.num_gpus,
        )

    def run(self) -> None:
        logger = logging.getLogger(__name__)
        run_id = self.sample_name
        tool = fetch_pipeline_definition(self.pipeline_name)["tool"]
        self.print_log(f"Run pbrun {tool}:\t{run_id}")
        runtime = self.compute_runtime()
        logger.debug("runtime:\t%s", runtime)
        input_paths = [
            str(Path(p).resolve())
            for p in [self.fa_path, *self.list_input_paths(), self.interval_file_path]
            if p
        ]
        output_paths = [o.path for o in luigi.task.flatten(self.output())]
        check_disk_space(self.dest_dir, required_gb=runtime["disk_gb"])
        self.setup_shell(
            run_id=run_id,
            commands=(
                self.docker if self.container_runtime == "docker" else self.pbrun
            ),
            cwd=self.dest_dir,
            **self.sh_config,
        )
        self.make_dirs(self.tmp_dir)
        self.run_shell(
            args=self.generate_container_command(
                args=self.generate_pbrun_args(),
                image=self.container_image,
                mount_dir_paths=[
                    self.dest_dir,
                    *{Path(p).parent for p in input_paths},
                ],
                cwd=self.dest_dir,
                runtime=self.container_runtime,
                docker=self.docker,
                num_gpus=self.num_gpus,
                n_cpu=self.n_cpu,
                memory_mb=self.memory_mb,
            ),
            input_files_or_dirs=input_paths,
            output_files_or_dirs=output_paths,
        )
        self.remove_files_and_dirs(self.tmp_dir)


class FastqPbrunTask(PbrunTask):
    """pbrun task that aligns a pair of FASTQ files.

    Parameters:
        fq_paths: Paths to the read 1 and read 2 FASTQ files.
        read_group: Read group fields for the SAM header.
        low_memory: Run pbrun in low-memory mode.
    """

    fq_paths = luigi.ListParameter()
    read_group = luigi.DictParameter(default={})
    low_memory = luigi.BoolParameter(default=False)

    def generate_read_group(self) -> str:
        """Build the tab-separated @RG line passed to ``--in-fq``."""
        return "\\t".join(
            [
                "@RG",
                "ID:{}".format(self.read_group.get("ID") or self.sample_name),
                "LB:{}".format(self.read_group.get("LB") or "lib1"),
                "PL:{}".format(self.read_group.get("PL") or "ILLUMINA"),
                "SM:{}".format(self.read_group.get("SM") or self.sample_name),
                "PU:{}".format(self.read_group.get("PU") or "unit1"),
            ]
            + [
                f"{k}:{v}"
                for k, v in self.read_group.items()
                if k not in {"ID", "LB", "PL", "SM", "PU"}
            ]
        )

    def generate_fastq_args(self) -> list[str]:
        return [
            "--in-fq",
            *[str(Path(p).resolve()) for p in self.fq_paths],
            self.generate_read_group(),
        ]

    def list_input_paths(self) -> list[str]:
        return list(self.fq_paths)

    def bam_outputs(self) -> list[luigi.LocalTarget]:
        return [
            luigi.LocalTarget(str(self.dest_dir.joinpath(f"{self.sample_name}.{s}")))
            for s in ["bam", "bam.bai"]
        ]


class BqsrMixin:
    """Known-sites parameters for tools that can recalibrate base qualities.

    Recalibration runs only when ``run_bqsr`` is set and at least one
    known-sites VCF is given.
    """

    known_sites_vcf_paths = luigi.ListParameter(default=[])
    run_bqsr = luigi.BoolParameter(default=True)

    @property
    def do_bqsr(self) -> bool:
        return bool(self.run_bqsr and self.known_sites_vcf_paths)

    @property
    def recal_path(self) -> Path:
        return self.dest_dir.joinpath(f"{self.sample_name}.recal.txt")

    def generate_bqsr_args(self) -> list[str]:
        if not self.do_bqsr:
            return []
        return [
            *[
                a
                for p in self.known_sites_vcf_paths
                for a in ["--knownSites", str(Path(p).resolve())]
            ],
            "--out-recal-file",
            str(self.recal_path),
        ]


class VariantOutputMixin:
    """Output VCF naming shared by variant callers."""

    gvcf = luigi.BoolParameter(default=False)

    @property
    def vcf_path(self) -> Path:
        return self.dest_dir.joinpath(
            self.sample_name + (".g.vcf.gz" if self.gvcf else ".vcf")
        )

    def generate_variant_args(self) -> list[str]:
        return [
            *(["--gvcf"] if self.gvcf else []),
            "--out-variants",
            str(self.vcf_path),
        ]


class Fq2bam(BqsrMixin, FastqPbrunTask):
    """Align reads, mark duplicates and optionally run BQSR with pbrun fq2bam."""

    pipeline_name = "fq2bam"

    def output(self) -> list[luigi.LocalTarget]:
        return self.bam_outputs() + (
            [luigi.LocalTarget(str(self.recal_path))] if self.do_bqsr else []
        )

    def list_input_paths(self) -> list[str]:
        return [*self.fq_paths, *self.known_sites_vcf_paths]

    def build_pbrun_args(self) -> list[str]:
        return [
            *self.generate_fastq_args(),
            *self.generate_bqsr_args(),
            *(["--low-memory"] if self.low_memory else []),
            "--out-bam",
            self.output()[0].path,
        ]


class Germline(BqsrMixin, VariantOutputMixin, FastqPbrunTask):
    """Align reads and call germline variants with pbrun germline."""

    pipeline_name = "germline"

    def output(self) -> list[luigi.LocalTarget]:
        return [
            *self.bam_outputs(),
            luigi.LocalTarget(str(self.vcf_path)),
            *([luigi.LocalTarget(str(self.recal_path))] if self.do_bqsr else []),
        ]

    def list_input_paths(self) -> list[str]:
        return [*self.fq_paths, *self.known_sites_vcf_paths]

    def build_pbrun_args(self) -> list[str]:
        return [
            *self.generate_fastq_args(),
            *self.generate_bqsr_args(),
            *(["--low-memory"] if self.low_memory else []),
            "--out-bam",
            self.output()[0].path,
            *self.generate_variant_args(),
        ]


class DeepvariantGermline(VariantOutputMixin, FastqPbrunTask):
    """Align reads and call germline variants with pbrun deepvariant_germline."""

    pipeline_name = "deepvariant_germline"

    def output(self) -> list[luigi.LocalTarget]:
        return [*self.bam_outputs(), luigi.LocalTarget(str(self.vcf_path))]

    def build_pbrun_args(self) -> list[str]:
        return [
            *self.generate_fastq_args(),
            *(["--low-memory"] if self.low_memory else []),
            "--out-bam",
            self.output()[0].path,
            *self.generate_variant_args(),
        ]


class Haplotypecaller(VariantOutputMixin, PbrunTask):
    """Call germline variants from a BAM with pbrun haplotypecaller.

    Parameters:
        input_bam_path: Path to the coordinate-sorted, indexed BAM file.
        recal_file_path: Optional BQSR report applied while calling.
    """

    input_bam_path = luigi.Parameter()
    recal_file_path = luigi.Parameter(default="")
    pipeline_name = "haplotypecaller"

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(str(self.vcf_path))

    def list_input_paths(self) -> list[str]:
        return [
            self.input_bam_path,
            *([self.recal_file_path] if self.recal_file_path else []),
        ]

    def build_pbrun_args(self) -> list[str]:
        return [
            "--in-bam",
            str(Path(self.input_bam_path).resolve()),
            *(
                ["--in-recal-file", str(Path(self.recal_file_path).resolve())]
                if self.recal_file_path
                else []
            ),
            *self.generate_variant_args(),
        ]


class Deepvariant(VariantOutputMixin, PbrunTask):
    """Call germline variants from a BAM with pbrun deepvariant.

    Parameters:
        input_bam_path: Path to the coordinate-sorted, indexed BAM file.
    """

    input_bam_path = luigi.Parameter()
    pipeline_name = "deepvariant"

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(str(self.vcf_path))

    def list_input_paths(self) -> list[str]:
        return [self.input_bam_path]

    def build_pbrun_args(self) -> list[str]:
        return [
            "--in-bam",
            str(Path(self.input_bam_path).resolve()),
            *self.generate_variant_args(),
        ]


class Mutectcaller(PbrunTask):
    """Call somatic variants with pbrun mutectcaller.

    Tumor-normal mode is used when ``normal_bam_path`` is given; otherwise the
    tumor BAM is called alone. ``sample_name`` doubles as the tumor name.

    Parameters:
        tumor_bam_path: Path to the tumor BAM file.
        normal_bam_path: Optional path to the matched normal BAM file.
        normal_name: Sample name of the normal in the BAM header.
    """

    tumor_bam_path = luigi.Parameter()
    normal_bam_path = luigi.Parameter(default="")
    normal_name = luigi.Parameter(default="normal")
    pipeline_name = "somatic"

    @property
    def tumor_normal(self) -> bool:
        return bool(self.normal_bam_path)

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(
            str(self.dest_dir.joinpath(f"{self.sample_name}.somatic.vcf"))
        )

    def list_input_paths(self) -> list[str]:
        return [
            self.tumor_bam_path,
            *([self.normal_bam_path] if self.tumor_normal else []),
        ]

    def build_pbrun_args(self) -> list[str]:
        return [
            "--in-tumor-bam",
            str(Path(self.tumor_bam_path).resolve()),
            "--tumor-name",
            self.sample_name,
            *(
                [
                    "--in-normal-bam",
                    str(Path(self.normal_bam_path).resolve()),
                    "--normal-name",
                    self.normal_name,
                ]
                if self.tumor_normal
                else []
            ),
            "--out-vcf",
            self.output().path,
        ]


if __name__ == "__main__":
    luigi.run()
