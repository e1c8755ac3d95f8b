"""Test configuration and fixtures."""

from pathlib import Path

import pytest


def _touch(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def ref_fa(tmp_path: Path) -> Path:
    """Provide a tiny reference FASTA."""
    return _touch(tmp_path / "ref" / "GRCh38.fa", ">chr1\nACGTACGTAC\n")


@pytest.fixture
def fq_paths(tmp_path: Path) -> list[Path]:
    """Provide a pair of (empty) gzipped FASTQ paths."""
    return [
        _touch(tmp_path / "fq" / f"sample01.WGS.R{i}.fq.gz") for i in (1, 2)
    ]


@pytest.fixture
def bam_path(tmp_path: Path) -> Path:
    return _touch(tmp_path / "bam" / "sample01.bam")


@pytest.fixture
def known_sites_vcfs(tmp_path: Path) -> list[Path]:
    return [
        _touch(tmp_path / "ref" / "dbsnp.vcf"),
        _touch(tmp_path / "ref" / "mills.vcf.gz"),
    ]


@pytest.fixture
def germline_config(
    ref_fa: Path, fq_paths: list[Path], known_sites_vcfs: list[Path]
) -> dict:
    """Provide a valid germline pipeline config."""
    return {
        "pipeline": "germline",
        "container": {"runtime": "docker", "num_gpus": 2},
        "resources": {
            "reference_fa": str(ref_fa),
            "known_sites_vcf": [str(p) for p in known_sites_vcfs],
        },
        "options": {"gvcf": True},
        "runs": [
            {
                "fq": [str(p) for p in fq_paths],
                "read_group": {"SM": "sample01", "PL": "ILLUMINA"},
            }
        ],
    }
