import json

import pytest

from accounts import AccountRegistry, load_accounts_file, parse_account_map
from config import Settings
from errors import AccountConfigError
from models import Account


def test_parse_account_map_inline_tokens():
    raw = json.dumps({
        "aurora": {"ig_user_id": "111", "page_access_token": "tok-a"},
        "novara": {"ig_user_id": "222", "access_token": "tok-n"},
    })
    accounts = parse_account_map(raw)
    assert accounts["aurora"] == Account(key="aurora", remote_user_id="111", access_token="tok-a")
    assert accounts["novara"].access_token == "tok-n"


def test_accounts_file_resolves_env_vars(tmp_path, monkeypatch):
    monkeypatch.setenv("IG_ACME_ID", "1784000")
    monkeypatch.setenv("PAGE_ACME_ACCESS_TOKEN", "tok-acme")
    monkeypatch.delenv("PAGE_NOVARA_ACCESS_TOKEN", raising=False)
    path = tmp_path / "accounts.json"
    path.write_text(json.dumps([
        {"key": "acme", "ig_user_id_env": "IG_ACME_ID", "access_token_env": "PAGE_ACME_ACCESS_TOKEN"},
        {"name": "novara", "ig_user_id": "222", "access_token_env": "PAGE_NOVARA_ACCESS_TOKEN"},
        {"ig_user_id": "333"},
    ]))

    accounts = load_accounts_file(str(path))

    assert set(accounts) == {"acme", "novara"}
    assert accounts["acme"].is_complete
    assert not accounts["novara"].is_complete


def test_registry_get_raises_for_unknown_or_incomplete(accounts):
    assert accounts.get("acme").remote_user_id == "1784000"
    with pytest.raises(AccountConfigError, match="not configured"):
        accounts.get("ghost")
    with pytest.raises(AccountConfigError, match="access token"):
        accounts.get("halfdone")


def test_registry_summary_never_exposes_tokens(accounts):
    summary = accounts.summary()
    assert summary == [
        {"account": "acme", "ready": True, "has_user_id": True, "has_token": True},
        {"account": "halfdone", "ready": False, "has_user_id": True, "has_token": False},
    ]
    assert "tok-acme" not in json.dumps(summary)


def test_registry_reload_picks_up_changes(tmp_path):
    path = tmp_path / "accounts.json"
    path.write_text(json.dumps([{"key": "acme", "ig_user_id": "1", "access_token": "t"}]))
    registry = AccountRegistry.from_settings(Settings(accounts_file=str(path)))
    assert registry.keys() == ["acme"]

    path.write_text(json.dumps([
        {"key": "acme", "ig_user_id": "1", "access_token": "t2"},
        {"key": "novara", "ig_user_id": "2", "access_token": "t3"},
    ]))
    assert registry.reload() == 2
    assert registry.get("acme").access_token == "t2"
    assert "novara" in registry


def test_account_map_takes_priority_over_file(tmp_path):
    path = tmp_path / "accounts.json"
    path.write_text(json.dumps([{"key": "fromfile", "ig_user_id": "1", "access_token": "t"}]))
    registry = AccountRegistry(
        account_map_json=json.dumps({"fromenv": {"ig_user_id": "2", "access_token": "u"}}),
        accounts_file=str(path),
    )
    assert registry.keys() == ["fromenv"]


def test_bad_account_map_is_a_config_error():
    with pytest.raises(AccountConfigError):
        AccountRegistry(account_map_json="{not json")


def test_missing_sources_give_empty_registry(tmp_path):
    registry = AccountRegistry(accounts_file=str(tmp_path / "nope.json"))
    assert registry.keys() == []


def test_broken_accounts_file_is_a_config_error(tmp_path):
    path = tmp_path / "accounts.json"
    path.write_text("[{not json")
    with pytest.raises(AccountConfigError, match="not valid JSON"):
        AccountRegistry(accounts_file=str(path))
