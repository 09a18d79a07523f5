import json
import logging
import os
import random

import pytest

import main
from errors import AutomationError, ConfigurationError, SessionError
from main import SearchOutcome, search_candidate, run, run_search_loop
from progress import RemainingWork, SearchProgress

NO_RESULTS = "No Google Voice numbers are available"


class FakeElement:
    def __init__(self, tab):
        self.tab = tab
        self.value = ""
        self.clicks = 0

    def click(self):
        self.clicks += 1

    def clear(self):
        self.value = ""

    def input(self, text, clear=False):
        if clear:
            self.value = ""
        self.value += text


class FakeTab:
    """Stand-in for a DrissionPage tab: candidates in `available` have results"""

    def __init__(self, available=(), failing=(), label="Search by city or area code"):
        self.available = set(available)
        self.failing = set(failing)
        self.label = label
        self.box = FakeElement(self)
        self.visited = []
        self.screenshots = []

    def get(self, url):
        self.visited.append(url)

    def ele(self, locator, timeout=None):
        if locator == f"@aria-label={self.label}":
            return self.box
        return None

    def eles(self, locator, timeout=None):
        assert locator == f"text:{NO_RESULTS}"
        if self.box.value in self.failing:
            raise RuntimeError("page disconnected")
        if self.box.value in self.available:
            return []
        return ["no numbers"]

    def get_screenshot(self, path=None, full_page=False):
        assert full_page
        with open(path, "wb") as f:
            f.write(b"png")
        self.screenshots.append(path)
        return path


class FakeClient:
    def __init__(self, tab):
        self.tab = tab
        self.connected = []

    def connect(self, identifier):
        self.connected.append(identifier)
        return object(), self.tab


@pytest.fixture
def config(tmp_path):
    cfg = main.get_default_config()
    cfg["search"]["pattern"] = "a12"
    cfg["search"]["exclude_digit_4"] = True
    cfg["files"]["state_dir"] = str(tmp_path / "state")
    cfg["files"]["screenshot_dir"] = str(tmp_path / "shots")
    cfg["files"]["log_file"] = None
    for key in ("initial_load_wait", "clear_wait", "typing_delay", "results_wait"):
        cfg["page"][key] = 0
    return cfg


def test_search_candidate_types_and_classifies(config):
    tab = FakeTab(available={"512"})
    assert search_candidate(tab, "512", config) is SearchOutcome.FOUND
    assert tab.box.value == "512"
    assert search_candidate(tab, "612", config) is SearchOutcome.NOT_FOUND
    assert tab.box.value == "612"


def test_search_candidate_falls_back_to_placeholder(config):
    tab = FakeTab()
    tab.ele = lambda locator, timeout=None: tab.box if locator.startswith("@placeholder=") else None
    assert search_candidate(tab, "012", config) is SearchOutcome.NOT_FOUND


def test_missing_search_box_is_automation_error(config):
    tab = FakeTab(label="something else")
    with pytest.raises(AutomationError) as excinfo:
        search_candidate(tab, "012", config)
    assert excinfo.value.candidate == "012"


def test_page_failure_is_automation_error(config):
    tab = FakeTab(failing={"312"})
    with pytest.raises(AutomationError, match="312"):
        search_candidate(tab, "312", config)


def test_loop_searches_everything_and_records_results(config):
    tab = FakeTab(available={"512", "912"})
    progress = SearchProgress(config["files"]["state_dir"], "a12", True)
    progress.load()
    work = RemainingWork(["012", "512", "712", "912"])

    summary = run_search_loop(tab, work, progress, config, random.Random(3))

    assert summary.attempted == 4
    assert summary.found == 2
    assert summary.not_found == 2
    assert len(work) == 0
    assert SearchProgress(config["files"]["state_dir"], "a12", True).load() == {"012", "512", "712", "912"}

    shots = sorted(os.path.basename(p) for p in tab.screenshots)
    assert shots[0].startswith("512_") and shots[0].endswith(".png")
    assert shots[1].startswith("912_")

    log_path = os.path.join(config["files"]["screenshot_dir"], "search_results.log")
    with open(log_path, encoding="utf-8") as f:
        lines = f.read().splitlines()
    assert len(lines) == 2
    assert all(" - search: " in line and " - screenshot: " in line for line in lines)


def test_loop_stops_on_error_without_recording_failed_candidate(config):
    tab = FakeTab(failing={"312"})
    progress = SearchProgress(config["files"]["state_dir"], "a12", True)
    progress.load()
    work = RemainingWork(["012", "312", "512"])

    with pytest.raises(AutomationError):
        run_search_loop(tab, work, progress, config, random.Random(0))

    saved = SearchProgress(config["files"]["state_dir"], "a12", True).load()
    assert "312" not in saved
    assert "312" in work
    assert saved | set(work) == {"012", "312", "512"}


def test_run_resumes_from_saved_progress(config):
    state_dir = config["files"]["state_dir"]
    SearchProgress(state_dir, "a12", True).save({"012", "112", "212"})

    tab = FakeTab()
    client = FakeClient(tab)
    summary = run("1003", config, client=client, rng=random.Random(1))

    assert client.connected == ["1003"]
    assert tab.visited == ["https://voice.google.com/signup"]
    assert summary.attempted == 6
    assert len(SearchProgress(state_dir, "a12", True).load()) == 9


def test_run_with_nothing_left_does_not_connect(config):
    SearchProgress(config["files"]["state_dir"], "a12", True).save(
        {f"{d}12" for d in "012356789"}
    )
    client = FakeClient(FakeTab())
    summary = run("1003", config, client=client)
    assert summary.attempted == 0
    assert client.connected == []


def test_run_rejects_bad_pattern_before_connecting(config):
    config["search"]["pattern"] = "abcde"
    client = FakeClient(FakeTab())
    with pytest.raises(ConfigurationError):
        run("1003", config, client=client)
    assert client.connected == []


def test_load_config_merges_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"search": {"pattern": "aaaabbb"}}), encoding="utf-8")

    config = main.load_config(str(path))

    assert config["search"]["pattern"] == "aaaabbb"
    assert config["search"]["exclude_digit_4"] is True
    assert config["bitbrowser"]["min_request_interval"] == 0.6


def test_load_config_missing_file_uses_defaults(tmp_path):
    assert main.load_config(str(tmp_path / "absent.json")) == main.get_default_config()


def test_load_config_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        main.load_config(str(path))


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("GV_SEARCH_PATTERN", "888abab")
    monkeypatch.setenv("GV_EXCLUDE_DIGIT_4", "no")
    monkeypatch.setenv("BITBROWSER_API_URL", "http://127.0.0.1:6000")

    config = main.load_config(str(tmp_path / "absent.json"))

    assert main.search_settings(config) == ("888abab", False)
    assert config["bitbrowser"]["base_url"] == "http://127.0.0.1:6000"


def test_search_settings_rejects_bad_flag(config):
    config["search"]["exclude_digit_4"] = "maybe"
    with pytest.raises(ConfigurationError):
        main.search_settings(config)


def test_screenshot_timestamp_is_filename_safe():
    from datetime import datetime
    stamp = main.screenshot_timestamp(datetime(2024, 5, 1, 12, 30, 45, 123456))
    assert stamp == "2024-05-01T12-30-45-123456"


def test_main_without_profile_prints_usage(capsys):
    assert main.main([]) == 2
    assert "usage" in capsys.readouterr().err


def test_main_configuration_error_exits_nonzero(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda config: None)
    for name in ("GV_SEARCH_PATTERN", "GV_EXCLUDE_DIGIT_4", "BITBROWSER_API_URL"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "search": {"pattern": "abx"},
        "files": {"log_file": None, "state_dir": str(tmp_path)},
    }), encoding="utf-8")

    assert main.main(["1003", "--config", str(path)]) == 1


def test_main_automation_error_exits_nonzero(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda config: None)
    def fail(profile, config):
        raise AutomationError("0123333", "search box not found")

    monkeypatch.setattr(main, "run", fail)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"files": {"log_file": None}}), encoding="utf-8")

    assert main.main(["1003", "--config", str(path)]) == 1


def test_main_success_exits_zero(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda config: None)
    monkeypatch.setattr(main, "run", lambda profile, config: main.SearchSummary())
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"files": {"log_file": None}}), encoding="utf-8")

    assert main.main(["1003", "--config", str(path)]) == 0


def test_initial_page_failed_navigation_is_session_error(config):
    tab = FakeTab()
    tab.get = lambda url: False
    with pytest.raises(SessionError):
        main.load_initial_page(tab, config)


def test_initial_page_navigation_exception_is_session_error(config):
    def disconnected(url):
        raise RuntimeError("page disconnected")

    tab = FakeTab()
    tab.get = disconnected
    with pytest.raises(SessionError, match="page disconnected"):
        main.load_initial_page(tab, config)


def test_run_reports_universe_size(config, caplog):
    caplog.set_level(logging.INFO, logger="main")
    run("1003", config, client=FakeClient(FakeTab()), rng=random.Random(2))
    assert "Searched 0 of 9 candidates, 9 remaining" in caplog.text


def test_console_logging_is_ready_before_config_is_read(tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(main, "setup_console_logging", lambda: calls.append("console"))
    monkeypatch.setattr(main, "load_config", lambda path: calls.append("load") or main.get_default_config())
    monkeypatch.setattr(main, "setup_logging", lambda config: calls.append("configured"))
    monkeypatch.setattr(main, "run", lambda profile, config: main.SearchSummary())

    assert main.main(["1003"]) == 0
    assert calls == ["console", "load", "configured"]


def test_main_corrupt_progress_record_exits_nonzero(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda config: None)
    for name in ("GV_SEARCH_PATTERN", "GV_EXCLUDE_DIGIT_4", "BITBROWSER_API_URL"):
        monkeypatch.delenv(name, raising=False)
    progress = SearchProgress(str(tmp_path), "abc3333", True)
    with open(progress.path, "wb") as f:
        f.write(b'["\xff\xfe"]')
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"files": {"log_file": None, "state_dir": str(tmp_path)}}), encoding="utf-8")

    assert main.main(["1003", "--config", str(path)]) == 1
