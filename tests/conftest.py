from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from inspection_rules import build_match_table


ROOT = Path(__file__).parent.parent

SOURCE_ALIASES = {"chat": "chat_id", "topic": "topic_id"}
DESTINATION_ALIASES = {"output_chat": "chat_id"}


def _apply_test_aliases(config):
    for section, aliases in [
        ("source", SOURCE_ALIASES),
        ("destination", DESTINATION_ALIASES),
    ]:
        if section not in config:
            continue
        for old, new in aliases.items():
            if old in config[section] and new not in config[section]:
                config[section][new] = config[section].pop(old)
    return config


def pytest_addoption(parser):
    parser.addoption(
        "--client-dir",
        default=str(ROOT / "clients" / "default"),
        help="Path to client directory containing config.yaml and companies.yaml",
    )


@pytest.fixture(scope="session")
def client_dir(request):
    return Path(request.config.getoption("--client-dir")).resolve()


@pytest.fixture(scope="session")
def client_config_path(client_dir):
    return client_dir / "config.yaml"


@pytest.fixture(scope="session")
def client_config(client_config_path):
    with open(client_config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)
    return _apply_test_aliases(config)


@pytest.fixture(scope="session")
def directory(client_dir, client_config):
    path = client_dir / client_config["paths"]["companies"]
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture(scope="session")
def companies(directory):
    return directory.get("companies", [])


@pytest.fixture(scope="session")
def aliases(directory):
    return directory.get("aliases", {}) or {}


@pytest.fixture(scope="session")
def match_table(companies, aliases):
    return build_match_table(companies, aliases)


@pytest.fixture(scope="session")
def test_assertions(client_dir):
    path = client_dir / "test_assertions.yaml"
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@pytest.fixture
def now():
    return datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def small_table():
    return build_match_table(
        ["ABC Trucking LLC", "ABC Trucking Express LLC", "KEL LOGISTICS INC", "KEL TRANS INC"],
        {"KELLOG": "KEL LOGISTICS INC"},
    )
