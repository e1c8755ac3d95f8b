from pathlib import Path

import pytest

from pbflow.cli import wdl
from pbflow.cli.wdl import build_workflow_inputs, render_wdl_documents, to_camel_case
from pbflow.task.runtime import load_pipeline_definitions


@pytest.fixture
def wdl_dir(tmp_path: Path) -> Path:
    render_wdl_documents(dest_dir_path=tmp_path)
    return tmp_path


def test_to_camel_case() -> None:
    assert to_camel_case("deepvariant_germline") == "DeepvariantGermline"
    assert to_camel_case("fq2bam") == "Fq2bam"


def test_render_all_pipelines(tmp_path: Path) -> None:
    written = render_wdl_documents(dest_dir_path=tmp_path)
    names = set(load_pipeline_definitions())
    assert len(written) == 2 * len(names)
    assert {p.relative_to(tmp_path).as_posix() for p in written} == {
        f"{d}/{n}.wdl" for n in names for d in ["tasks", "workflows"]
    }
    for p in written:
        assert p.read_text().startswith("version 1.2\n"), p


def test_task_document(wdl_dir: Path) -> None:
    text = wdl_dir.joinpath("tasks/germline.wdl").read_text()
    assert "task Germline {" in text
    # WDL escapes keep the tab markers literal for pbrun
    assert (
        r'        String read_group = "@RG\\tID:~{sample_name}\\tLB:lib1'
        r'\\tPL:ILLUMINA\\tSM:~{sample_name}\\tPU:unit1"'
    ) in text
    assert (
        "        String container_image ="
        ' "nvcr.io/nvidia/clara/clara-parabricks:4.3.1-1"\n'
    ) in text
    assert "        Int num_gpus = 1\n" in text
    assert "        Float disk_scale = 3.5\n" in text
    assert (
        '    Int disk_gb = ceil((size(in_fq1, "GB") + size(in_fq2, "GB")'
        ' + size(ref_tarball, "GB") + size(known_sites_vcfs, "GB"))'
        " * disk_scale) + disk_padding_gb\n"
    ) in text
    assert "        mkdir -p tmp\n        pbrun germline \\\n" in text
    assert "            --tmp-dir tmp\n    >>>\n" in text
    assert '        memory: "~{memory_gb} GB"\n' in text
    assert "        gpu: true\n" in text
    assert "        gpu: num_gpus\n" in text
    assert "        File? out_recal = if do_bqsr then recal_name else None\n" in text


def test_workflow_document(wdl_dir: Path) -> None:
    text = wdl_dir.joinpath("workflows/fq2bam.wdl").read_text()
    assert 'import "../tasks/fq2bam.wdl" as fq2bam_task\n' in text
    assert "workflow Fq2bamWorkflow {" in text
    assert "        Boolean run_bqsr = true\n" in text
    assert (
        "    Boolean do_bqsr = run_bqsr && length(known_sites_vcfs) > 0\n"
    ) in text
    assert "    call fq2bam_task.Fq2bam {\n" in text
    assert "            do_bqsr = do_bqsr,\n" in text
    assert "        File? out_recal = Fq2bam.out_recal\n" in text
    # branch flags are computed, never exposed as workflow inputs
    assert "        Boolean do_bqsr = false\n" not in text


def test_somatic_documents(wdl_dir: Path) -> None:
    task = wdl_dir.joinpath("tasks/somatic.wdl").read_text()
    assert "pbrun mutectcaller" in task
    assert "        String? normal_name\n" in task
    workflow = wdl_dir.joinpath("workflows/somatic.wdl").read_text()
    assert "    Boolean tumor_normal = defined(in_normal_bam)\n" in workflow
    assert "    call somatic_task.Somatic {\n" in workflow


def test_build_workflow_inputs_drops_branches() -> None:
    haplotypecaller = load_pipeline_definitions()["haplotypecaller"]
    names = [i["name"] for i in build_workflow_inputs(haplotypecaller)]
    assert "use_recal" not in names
    assert "in_recal_file" in names


def test_render_is_deterministic(tmp_path: Path) -> None:
    first = render_wdl_documents(
        dest_dir_path=tmp_path / "a", pipeline_names=["deepvariant"]
    )
    second = render_wdl_documents(
        dest_dir_path=tmp_path / "b", pipeline_names=["deepvariant"]
    )
    assert [p.read_text() for p in first] == [p.read_text() for p in second]


def test_render_with_custom_image_and_gpus(tmp_path: Path) -> None:
    [task, workflow] = render_wdl_documents(
        dest_dir_path=tmp_path,
        pipeline_names=["haplotypecaller"],
        container_image="registry.example.com/parabricks:4.4.0-1",
        num_gpus=4,
    )
    for p in [task, workflow]:
        text = p.read_text()
        assert "registry.example.com/parabricks:4.4.0-1" in text
        assert "Int num_gpus = 4" in text


def test_render_rejects_unknown_pipeline(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="unknown pipeline: bismark"):
        render_wdl_documents(dest_dir_path=tmp_path, pipeline_names=["bismark"])
    assert not any(tmp_path.iterdir())


@pytest.mark.parametrize("num_gpus", [0, -1])
def test_render_rejects_non_positive_gpus(tmp_path: Path, num_gpus: int) -> None:
    with pytest.raises(ValueError, match="num_gpus must be positive"):
        render_wdl_documents(dest_dir_path=tmp_path, num_gpus=num_gpus)
    assert not any(tmp_path.iterdir())


def test_index_inputs_are_documented(wdl_dir: Path) -> None:
    task = wdl_dir.joinpath("tasks/germline.wdl").read_text()
    assert "\n    parameter_meta {\n" in task
    assert '        known_sites_tbis: "Tabix indexes of known_sites_vcfs.' in task
    assert "must share a directory with their VCFs" in task
    workflow = wdl_dir.joinpath("workflows/deepvariant.wdl").read_text()
    assert '        in_bai: "Index of in_bam.' in workflow


def test_header_omits_missing_version(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(wdl, "__version__", None)
    written = render_wdl_documents(dest_dir_path=tmp_path, pipeline_names=["somatic"])
    for p in written:
        text = p.read_text()
        assert "# Rendered by pbflow; edit pbflow/static/pipelines.yml" in text
        assert "None;" not in text


def _load_wdl_parser():
    """Return miniwdl when it accepts WDL 1.2 documents."""
    WDL = pytest.importorskip("WDL")
    minimal_doc = (
        "version 1.2\n\n"
        "task t {\n"
        "    command <<< true >>>\n"
        '    requirements {\n        container: "x"\n        gpu: true\n    }\n'
        "    hints {\n        gpu: 1\n    }\n"
        "}\n"
    )
    try:
        WDL.parse_document(minimal_doc).typecheck()
    except (
        WDL.Error.SyntaxError,
        WDL.Error.ValidationError,
        WDL.Error.MultipleValidationErrors,
    ) as e:
        pytest.skip(f"installed miniwdl does not support WDL 1.2: {e}")
    return WDL


@pytest.mark.parametrize("name", sorted(load_pipeline_definitions()))
def test_rendered_documents_parse_as_wdl(wdl_dir: Path, name: str) -> None:
    WDL = _load_wdl_parser()
    doc = WDL.load(str(wdl_dir.joinpath(f"workflows/{name}.wdl")))
    assert doc.workflow.name == f"{to_camel_case(name)}Workflow"
    [imported] = doc.imports
    assert [t.name for t in imported.doc.tasks] == [to_camel_case(name)]
