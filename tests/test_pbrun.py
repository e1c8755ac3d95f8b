from pathlib import Path

import pytest

from pbflow.task.core import PbflowTask
from pbflow.task.pbrun import (
    Deepvariant,
    DeepvariantGermline,
    Fq2bam,
    Germline,
    Haplotypecaller,
    Mutectcaller,
)


def _r(p: Path | str) -> str:
    return str(Path(p).resolve())


def test_fq2bam_args_without_known_sites(tmp_path, ref_fa, fq_paths) -> None:
    task = Fq2bam(
        fa_path=str(ref_fa),
        sample_name="s1",
        dest_dir_path=str(tmp_path / "out"),
        fq_paths=[str(p) for p in fq_paths],
    )
    out = tmp_path.resolve() / "out"
    assert not task.do_bqsr
    assert task.generate_pbrun_args() == [
        "pbrun",
        "fq2bam",
        "--ref",
        _r(ref_fa),
        "--in-fq",
        _r(fq_paths[0]),
        _r(fq_paths[1]),
        "@RG\\tID:s1\\tLB:lib1\\tPL:ILLUMINA\\tSM:s1\\tPU:unit1",
        "--out-bam",
        str(out / "s1.bam"),
        "--num-gpus",
        "1",
        "--tmp-dir",
        str(out / ".s1.pbrun.tmp"),
    ]
    assert [o.path for o in task.output()] == [
        str(out / "s1.bam"),
        str(out / "s1.bam.bai"),
    ]


def test_fq2bam_bqsr_branch(tmp_path, ref_fa, fq_paths, known_sites_vcfs) -> None:
    kwargs = {
        "fa_path": str(ref_fa),
        "sample_name": "s2",
        "dest_dir_path": str(tmp_path),
        "fq_paths": [str(p) for p in fq_paths],
        "known_sites_vcf_paths": [str(p) for p in known_sites_vcfs],
    }
    task = Fq2bam(**kwargs, low_memory=True)
    args = task.generate_pbrun_args()
    assert task.do_bqsr
    assert args.count("--knownSites") == 2
    assert args[args.index("--out-recal-file") + 1] == str(
        tmp_path.resolve() / "s2.recal.txt"
    )
    assert "--low-memory" in args
    assert task.output()[-1].path.endswith("s2.recal.txt")

    skipped = Fq2bam(**kwargs, run_bqsr=False)
    assert not skipped.do_bqsr
    assert "--knownSites" not in skipped.generate_pbrun_args()
    assert len(skipped.output()) == 2


def test_read_group_keeps_custom_fields(ref_fa, fq_paths) -> None:
    task = DeepvariantGermline(
        fa_path=str(ref_fa),
        sample_name="s3",
        fq_paths=[str(p) for p in fq_paths],
        read_group={"SM": "patient3", "PL": "ILLUMINA", "CN": "center"},
    )
    assert task.generate_read_group() == (
        "@RG\\tID:s3\\tLB:lib1\\tPL:ILLUMINA\\tSM:patient3\\tPU:unit1\\tCN:center"
    )


def test_germline_gvcf_output(tmp_path, ref_fa, fq_paths) -> None:
    task = Germline(
        fa_path=str(ref_fa),
        sample_name="s4",
        dest_dir_path=str(tmp_path),
        fq_paths=[str(p) for p in fq_paths],
        gvcf=True,
    )
    args = task.generate_pbrun_args()
    assert args[:2] == ["pbrun", "germline"]
    assert "--gvcf" in args
    assert args[args.index("--out-variants") + 1].endswith("s4.g.vcf.gz")
    assert [Path(o.path).name for o in task.output()] == [
        "s4.bam",
        "s4.bam.bai",
        "s4.g.vcf.gz",
    ]


def test_haplotypecaller_optional_recal_and_intervals(
    tmp_path, ref_fa, bam_path
) -> None:
    recal = tmp_path / "s5.recal.txt"
    recal.write_text("")
    bed = tmp_path / "targets.bed"
    bed.write_text("")
    task = Haplotypecaller(
        fa_path=str(ref_fa),
        sample_name="s5",
        dest_dir_path=str(tmp_path),
        input_bam_path=str(bam_path),
        recal_file_path=str(recal),
        interval_file_path=str(bed),
    )
    args = task.generate_pbrun_args()
    assert args[args.index("--in-bam") + 1] == _r(bam_path)
    assert args[args.index("--in-recal-file") + 1] == _r(recal)
    assert args[args.index("--interval-file") + 1] == _r(bed)
    assert "--gvcf" not in args
    assert task.output().path.endswith("s5.vcf")
    assert task.list_input_paths() == [str(bam_path), str(recal)]


def test_deepvariant_args(tmp_path, ref_fa, bam_path) -> None:
    task = Deepvariant(
        fa_path=str(ref_fa),
        sample_name="s6",
        dest_dir_path=str(tmp_path),
        input_bam_path=str(bam_path),
        num_gpus=4,
        add_pbrun_args=["--run-partition"],
    )
    args = task.generate_pbrun_args()
    assert args[:2] == ["pbrun", "deepvariant"]
    assert args[args.index("--num-gpus") + 1] == "4"
    assert args[-1] == "--run-partition"
    assert "--interval-file" not in args


def test_mutectcaller_tumor_only_and_tumor_normal(tmp_path, ref_fa, bam_path) -> None:
    normal = tmp_path / "normal.bam"
    normal.write_text("")
    kwargs = {
        "fa_path": str(ref_fa),
        "sample_name": "tumor7",
        "dest_dir_path": str(tmp_path),
        "tumor_bam_path": str(bam_path),
    }
    tumor_only = Mutectcaller(**kwargs)
    args = tumor_only.generate_pbrun_args()
    assert args[:2] == ["pbrun", "mutectcaller"]
    assert args[args.index("--tumor-name") + 1] == "tumor7"
    assert "--in-normal-bam" not in args
    assert tumor_only.output().path.endswith("tumor7.somatic.vcf")

    paired = Mutectcaller(**kwargs, normal_bam_path=str(normal), normal_name="n7")
    args = paired.generate_pbrun_args()
    assert paired.tumor_normal
    assert args[args.index("--in-normal-bam") + 1] == _r(normal)
    assert args[args.index("--normal-name") + 1] == "n7"


def test_compute_runtime_sizes_from_inputs(tmp_path, ref_fa, bam_path) -> None:
    task = Deepvariant(
        fa_path=str(ref_fa),
        sample_name="s8",
        dest_dir_path=str(tmp_path),
        input_bam_path=str(bam_path),
        num_gpus=2,
    )
    assert task.compute_runtime() == {
        "cpu": 16,
        "memory_gb": 60,
        "gpu": 2,
        "disk_gb": 31,
    }


def test_container_command_with_docker(tmp_path) -> None:
    command = PbflowTask.generate_container_command(
        args=["pbrun", "fq2bam", "--in-fq", "a.fq.gz", "@RG\\tID:1"],
        image="nvcr.io/nvidia/clara/clara-parabricks:4.3.1-1",
        mount_dir_paths=[tmp_path / "b", tmp_path / "a", tmp_path / "a"],
        cwd=tmp_path / "a",
        num_gpus=2,
        n_cpu=8,
        memory_mb=65536.0,
    )
    a = tmp_path.resolve() / "a"
    b = tmp_path.resolve() / "b"
    assert command == (
        "set -e && docker run --rm --gpus 2"
        ' --user "$(id -u):$(id -g)"'
        " --cpus 8 --memory 65536m"
        f" --volume {a}:{a} --volume {b}:{b}"
        f" --workdir {a}"
        " nvcr.io/nvidia/clara/clara-parabricks:4.3.1-1"
        " pbrun fq2bam --in-fq a.fq.gz '@RG\\tID:1'"
    )


def test_container_command_without_runtime(tmp_path) -> None:
    command = PbflowTask.generate_container_command(
        args=["/opt/pbrun", "deepvariant"],
        image="ignored",
        mount_dir_paths=[tmp_path],
        cwd=tmp_path,
        runtime="none",
    )
    assert command == "set -e && /opt/pbrun deepvariant"
    with pytest.raises(ValueError, match="unsupported container runtime"):
        PbflowTask.generate_container_command(
            args=["pbrun"], image="x", mount_dir_paths=[], cwd=tmp_path, runtime="lxc"
        )


def test_generate_version_commands() -> None:
    assert list(
        PbflowTask.generate_version_commands(
            ["/usr/bin/bwa", "pbrun", "tabix", "/usr/bin/docker"]
        )
    ) == [
        '/usr/bin/bwa 2>&1 | grep -e "Program:" -e "Version:"',
        "pbrun version",
        "tabix --version | head -1",
        "/usr/bin/docker --version",
    ]
