import importlib.util
from pathlib import Path

from paybridge.core.database import Base, engine


SCRIPTS = Path(__file__).resolve().parents[1] / "scripts"


def _load(name):
    spec = importlib.util.spec_from_file_location(f"script_{name}", SCRIPTS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_reconcile_script_runs_against_empty_database():
    Base.metadata.create_all(bind=engine)
    assert _load("reconcile_activations").main(["--limit", "5"]) == 0


def test_auth_header_script_prints_header(capsys):
    assert _load("click_auth_header").main() == 0
    line = capsys.readouterr().out.strip()
    assert line.startswith("Auth: 3003:")
    assert len(line.split(":")) == 4
