import json

import pytest
from pydantic import ValidationError

from localshare.errors import SettingsError
from localshare.settings import ADJECTIVES, ANIMALS, AppSettings, SettingsStore, generate_alias


def test_generated_alias_shape():
    adjective, animal = generate_alias().split(" ")
    assert adjective in ADJECTIVES
    assert animal in ANIMALS


def test_defaults():
    settings = AppSettings()
    assert settings.port == 3030
    assert settings.alias
    assert settings.identity().alias == settings.alias


def test_validation():
    with pytest.raises(ValidationError):
        AppSettings(alias="", port=3030)
    with pytest.raises(ValidationError):
        AppSettings(alias="Bob", port=70000)


def test_first_load_writes_defaults(tmp_path):
    store = SettingsStore(tmp_path / "cfg" / "settings.json")
    settings = store.load()

    saved = json.loads(store.path.read_text())
    assert saved == {"alias": settings.alias, "port": 3030}


def test_round_trip(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    store.save(AppSettings(alias="Bob", port=4040))

    assert store.load() == AppSettings(alias="Bob", port=4040)


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")

    settings = SettingsStore(path).load()

    assert settings.port == 3030
    assert json.loads(path.read_text())["alias"] == settings.alias


def test_save_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    store = SettingsStore(blocker / "settings.json")

    with pytest.raises(SettingsError):
        store.save(AppSettings(alias="Bob"))
    # load() still returns usable defaults.
    assert store.load().port == 3030
