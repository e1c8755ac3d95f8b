import sys

import pytest
import yaml

from pbflow.cli import main as cli


def _run(monkeypatch, *args: str) -> None:
    monkeypatch.setattr(sys, "argv", ["pbflow", *args])
    cli.main()


def test_init_writes_config(monkeypatch, tmp_path) -> None:
    yml = tmp_path / "pbflow.yml"
    _run(monkeypatch, "init", f"--yml={yml}", "--pipeline=somatic")
    config = yaml.safe_load(yml.read_text())
    assert config["pipeline"] == "somatic"
    assert config["container"]["image"].startswith("nvcr.io/nvidia/clara/")


def test_init_rejects_unknown_pipeline(monkeypatch, tmp_path) -> None:
    with pytest.raises(ValueError, match="unknown pipeline"):
        _run(monkeypatch, "init", f"--yml={tmp_path / 'x.yml'}", "--pipeline=foo")


def test_run_dispatch(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(cli, "run_pipeline", lambda **kwargs: calls.append(kwargs))
    _run(monkeypatch, "run", "--yml=c.yml", "--workers=2", "--skip-cleaning")
    assert calls == [
        {
            "config_yml_path": "c.yml",
            "dest_dir_path": ".",
            "max_n_worker": "2",
            "skip_cleaning": True,
            "print_subprocesses": False,
            "console_log_level": "WARNING",
        }
    ]


def test_wdl_dispatch(monkeypatch, tmp_path) -> None:
    calls = []
    monkeypatch.setattr(
        cli, "render_wdl_documents", lambda **kwargs: calls.append(kwargs)
    )
    _run(monkeypatch, "wdl", f"--dest-dir={tmp_path}", "--gpus=2", "germline")
    assert calls[0]["dest_dir_path"] == str(tmp_path)
    assert calls[0]["pipeline_names"] == ["germline"]
    assert calls[0]["num_gpus"] == 2


def test_pipelines_lists_registry(monkeypatch, capsys) -> None:
    _run(monkeypatch, "pipelines")
    listed = yaml.safe_load(capsys.readouterr().out)
    assert listed["somatic"]["tool"] == "mutectcaller"
    assert listed["fq2bam"]["input"] == "fastq"
