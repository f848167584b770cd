from pathlib import Path

from tagme_card.config import ensure_workspace


def test_first_run_creates_conf(tmp_path: Path):
    paths, _ = ensure_workspace(tmp_path)

    conf = tmp_path / "local" / "card.conf"
    assert paths.conf_file == conf
    txt = conf.read_text()
    assert 'default_region = "PH"' in txt
    assert 'bucket = "profile-photos"' in txt


def test_first_run_keeps_existing_conf(tmp_path: Path):
    conf = tmp_path / "local" / "card.conf"
    conf.parent.mkdir()
    conf.write_text('default_region = "US"\n')

    _, settings = ensure_workspace(tmp_path)

    assert conf.read_text() == 'default_region = "US"\n'
    assert settings.default_country_code == "+1"
