from config import Config, get_logger

FEEDS_YAML = """
folders:
  - Tech
  - ""
feeds:
  lwn:
    title: "LWN.net"
    url: "https://lwn.net/headlines/rss"
    folder: Tech
    fetch_content: true
  untitled:
    url: "https://example.com/rss"
  broken: "just a string"
filter_keywords:
  - " Sponsored "
  - Advertorial
"""


def test_feeds_yaml_is_loaded(tmp_path, monkeypatch):
    feeds_path = tmp_path / "feeds.yaml"
    feeds_path.write_text(FEEDS_YAML)
    monkeypatch.setenv("FEEDS_CONFIG_PATH", str(feeds_path))

    cfg = Config()

    assert cfg.FEED_FOLDERS == ["Tech"]
    assert set(cfg.FEED_SUBSCRIPTIONS) == {"lwn", "untitled"}
    assert cfg.FEED_SUBSCRIPTIONS["lwn"] == {
        "title": "LWN.net",
        "url": "https://lwn.net/headlines/rss",
        "color": None,
        "fetch_content": True,
        "folder": "Tech",
    }
    assert cfg.FEED_SUBSCRIPTIONS["untitled"]["title"] == "untitled"
    assert cfg.FILTER_KEYWORDS == ["sponsored", "advertorial"]


def test_missing_feeds_yaml_yields_empty_sources(tmp_path, monkeypatch):
    monkeypatch.setenv("FEEDS_CONFIG_PATH", str(tmp_path / "absent.yaml"))
    cfg = Config()
    assert cfg.FEED_SUBSCRIPTIONS == {}
    assert cfg.FILTER_KEYWORDS == []


def test_defaults_and_invalid_integers(tmp_path, monkeypatch):
    monkeypatch.setenv("FEEDS_CONFIG_PATH", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("MAX_ARTICLE_AGE_DAYS", raising=False)
    monkeypatch.delenv("REFRESH_INTERVAL_MINUTES", raising=False)
    cfg = Config()
    assert cfg.MAX_ARTICLE_AGE_DAYS == 3
    assert cfg.REFRESH_INTERVAL_MINUTES == 30
    assert cfg.CONTENT_FETCH_TIMEOUT == 15
    assert cfg.CONTENT_FETCH_DELAY_MS == 500

    monkeypatch.setenv("MAX_ARTICLE_AGE_DAYS", "not-a-number")
    assert Config().MAX_ARTICLE_AGE_DAYS == 3
    monkeypatch.setenv("MAX_ARTICLE_AGE_DAYS", "0")
    assert Config().MAX_ARTICLE_AGE_DAYS == 3
    monkeypatch.setenv("MAX_ARTICLE_AGE_DAYS", "7")
    assert Config().MAX_ARTICLE_AGE_DAYS == 7


def test_secrets_file_sets_environment(tmp_path, monkeypatch):
    secrets = tmp_path / "secrets.yaml"
    secrets.write_text("environment:\n  USER_AGENT: TestReader/1.0\n")
    # Registered so monkeypatch restores it after the secrets loader writes to os.environ
    monkeypatch.setenv("USER_AGENT", "placeholder")
    monkeypatch.setenv("SECRETS_FILE", str(secrets))
    monkeypatch.setenv("FEEDS_CONFIG_PATH", str(tmp_path / "absent.yaml"))

    assert Config().USER_AGENT == "TestReader/1.0"


def test_logger_names():
    assert get_logger("fetcher").name == "FeedReader.fetcher"
