"""Reference resource preparation for pbflow pipelines.

pbrun expects a FASTA index next to the reference, a BWA index when it aligns
reads, and tabix-indexed known-sites VCFs for BQSR. These tasks create the
missing files on the host and reuse existing ones.
"""

import re
from pathlib import Path

import luigi

from .core import PbflowTask

BWA_INDEX_SUFFIXES = ["amb", "ann", "bwt", "pac", "sa"]


class SamtoolsFaidx(PbflowTask):
    """Create a FASTA index (.fai) with samtools faidx.

    Parameters:
        fa_path: Path to the reference FASTA file.
        samtools: Path to the samtools executable.
        sh_config: Shell configuration parameters.
    """

    fa_path = luigi.Parameter()
    samtools = luigi.Parameter(default="samtools")
    sh_config = luigi.DictParameter(default={})
    priority = 100

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(f"{Path(self.fa_path).resolve()}.fai")

    def run(self) -> None:
        fa = Path(self.fa_path).resolve()
        run_id = fa.stem
        self.print_log(f"Index FASTA:\t{run_id}")
        self.setup_shell(
            run_id=run_id, commands=self.samtools, cwd=fa.parent, **self.sh_config
        )
        self.run_shell(
            args=f"set -e && {self.samtools} faidx {fa}",
            input_files_or_dirs=fa,
            output_files_or_dirs=self.output().path,
        )


class CreateBwaIndices(PbflowTask):
    """Create the BWA index files that pbrun aligners read.

    Parameters:
        fa_path: Path to the reference FASTA file.
        bwa: Path to the BWA executable.
        sh_config: Shell configuration parameters.
    """

    fa_path = luigi.Parameter()
    bwa = luigi.Parameter(default="bwa")
    sh_config = luigi.DictParameter(default={})
    priority = 100

    def output(self) -> list[luigi.LocalTarget]:
        fa = Path(self.fa_path).resolve()
        return [luigi.LocalTarget(f"{fa}.{s}") for s in BWA_INDEX_SUFFIXES]

    def run(self) -> None:
        fa = Path(self.fa_path).resolve()
        run_id = fa.stem
        self.print_log(f"Create BWA indices:\t{run_id}")
        self.setup_shell(
            run_id=run_id, commands=self.bwa, cwd=fa.parent, **self.sh_config
        )
        self.run_shell(
            args=f"set -e && {self.bwa} index {fa}",
            input_files_or_dirs=fa,
            output_files_or_dirs=[o.path for o in self.output()],
        )


class FetchReferenceFasta(luigi.WrapperTask):
    """Ensure a reference FASTA is indexed for pbrun.

    The output is the FASTA target followed by its .fai index and, when
    ``bwa_index`` is set, the BWA index files.

    Parameters:
        fa_path: Path to the reference FASTA file.
        bwa_index: Create BWA indices (needed by FASTQ-input pipelines).
        samtools: Path to the samtools executable.
        bwa: Path to the BWA executable.
        sh_config: Shell configuration parameters.
    """

    fa_path = luigi.Parameter()
    bwa_index = luigi.BoolParameter(default=False)
    samtools = luigi.Parameter(default="samtools")
    bwa = luigi.Parameter(default="bwa")
    sh_config = luigi.DictParameter(default={})
    priority = 100

    def requires(self) -> list[luigi.Task]:
        return [
            SamtoolsFaidx(
                fa_path=self.fa_path, samtools=self.samtools, sh_config=self.sh_config
            ),
            *(
                [
                    CreateBwaIndices(
                        fa_path=self.fa_path, bwa=self.bwa, sh_config=self.sh_config
                    )
                ]
                if self.bwa_index
                else []
            ),
        ]

    def output(self) -> list[luigi.LocalTarget]:
        return [
            luigi.LocalTarget(str(Path(self.fa_path).resolve())),
            self.input()[0],
            *(self.input()[1] if self.bwa_index else []),
        ]


class FetchResourceVcf(PbflowTask):
    """Ensure a VCF is bgzip-compressed and tabix-indexed.

    Parameters:
        src_path: Path to the source VCF file.
        bgzip: Path to the bgzip executable.
        tabix: Path to the tabix executable.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    src_path = luigi.Parameter()
    bgzip = luigi.Parameter(default="bgzip")
    tabix = luigi.Parameter(default="tabix")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 70

    def output(self) -> list[luigi.LocalTarget]:
        """Return the bgzipped VCF target and its tabix index target."""
        src = Path(self.src_path).resolve()
        dest_vcf = src.parent.joinpath(re.sub(r"\.(gz|bgz)$", "", src.name) + ".gz")
        return [luigi.LocalTarget(f"{dest_vcf}{s}") for s in ["", ".tbi"]]

    def run(self) -> None:
        src = Path(self.src_path).resolve()
        dest_vcf = Path(self.output()[0].path)
        run_id = Path(dest_vcf.stem).stem
        self.print_log(f"Index a VCF:\t{run_id}")
        self.setup_shell(
            run_id=run_id,
            commands=[self.bgzip, self.tabix],
            cwd=dest_vcf.parent,
            **self.sh_config,
        )
        if src != dest_vcf:
            self.run_shell(
                args=(
                    f"set -e && cp {src} {dest_vcf}"
                    if src.name.endswith(".bgz")
                    else (
                        f"set -e && {self.bgzip} -@ {self.n_cpu}"
                        f" -c {src} > {dest_vcf}"
                    )
                ),
                input_files_or_dirs=src,
                output_files_or_dirs=dest_vcf,
            )
        self.run_shell(
            args=f"set -e && {self.tabix} --preset vcf {dest_vcf}",
            input_files_or_dirs=dest_vcf,
            output_files_or_dirs=f"{dest_vcf}.tbi",
        )


class FetchKnownSitesVcfs(luigi.WrapperTask):
    """Prepare every known-sites VCF used for BQSR.

    Parameters:
        known_sites_vcf_paths: List of paths to known variant VCF files.
        bgzip: Path to the bgzip executable.
        tabix: Path to the tabix executable.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    known_sites_vcf_paths = luigi.ListParameter(default=[])
    bgzip = luigi.Parameter(default="bgzip")
    tabix = luigi.Parameter(default="tabix")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 70

    def requires(self) -> list[luigi.Task]:
        return [
            FetchResourceVcf(
                src_path=p,
                bgzip=self.bgzip,
                tabix=self.tabix,
                n_cpu=self.n_cpu,
                sh_config=self.sh_config,
            )
            for p in self.known_sites_vcf_paths
        ]

    def output(self) -> list[luigi.Target]:
        return self.input()
