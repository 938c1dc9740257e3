import gzip
import logging
import os
import time

import pytest

from srelab_log import GzipRotatingFileHandler

LINE = "0123456789"


def _emit(handler: logging.Handler, message: str) -> None:
    handler.emit(logging.makeLogRecord({"msg": message, "levelno": logging.INFO}))


@pytest.fixture()
def handlers():
    opened = []

    def _make(path, **kwargs):
        handler = GzipRotatingFileHandler(path, **kwargs)
        handler.setFormatter(logging.Formatter("%(message)s"))
        opened.append(handler)
        return handler

    yield _make
    for handler in opened:
        handler.close()


def test_creates_parent_dirs_and_appends(tmp_path, handlers):
    path = tmp_path / "nested" / "app.log"
    handler = handlers(path)

    _emit(handler, "a")
    _emit(handler, "b")

    assert path.read_text(encoding="utf-8") == "a\nb\n"
    assert handler.backups() == []


def test_appends_to_existing_file(tmp_path, handlers):
    path = tmp_path / "app.log"
    path.write_text("old\n", encoding="utf-8")

    _emit(handlers(path), "new")

    assert path.read_text(encoding="utf-8") == "old\nnew\n"


def test_rotates_when_next_record_reaches_size(tmp_path, handlers):
    path = tmp_path / "app.log"
    handler = handlers(path, max_bytes=20, compress=False)

    for _ in range(3):
        _emit(handler, LINE)

    backups = handler.backups()
    assert [os.path.basename(b) for b in backups] == ["app.log.1", "app.log.2"]
    assert path.read_text(encoding="utf-8") == LINE + "\n"


def test_keeps_at_most_backup_count(tmp_path, handlers):
    path = tmp_path / "app.log"
    handler = handlers(path, max_bytes=15, backup_count=2, compress=False)

    for i in range(6):
        _emit(handler, f"line-{i:04d}")

    backups = handler.backups()
    assert len(backups) == 2
    # Newest first: the two lines written just before the live one.
    with open(backups[0], encoding="utf-8") as f1, open(backups[1], encoding="utf-8") as f2:
        assert [f1.read(), f2.read()] == ["line-0004\n", "line-0003\n"]
    assert path.read_text(encoding="utf-8") == "line-0005\n"


def test_compresses_backups(tmp_path, handlers):
    path = tmp_path / "app.log"
    handler = handlers(path, max_bytes=20, compress=True)

    _emit(handler, LINE)
    _emit(handler, LINE)

    (backup,) = handler.backups()
    assert backup.endswith("app.log.1.gz")
    with gzip.open(backup, "rt", encoding="utf-8") as f:
        assert f.read() == LINE + "\n"


def test_removes_backups_older_than_max_age(tmp_path, handlers):
    path = tmp_path / "app.log"
    ancient = tmp_path / "app.log.1"
    ancient.write_text("ancient\n", encoding="utf-8")
    forty_days_ago = time.time() - 40 * 24 * 60 * 60
    os.utime(ancient, (forty_days_ago, forty_days_ago))
    unrelated = tmp_path / "app.log.notes"
    unrelated.write_text("keep me", encoding="utf-8")

    handler = handlers(path, max_bytes=20, max_age_days=28, compress=False)
    _emit(handler, LINE)
    _emit(handler, LINE)

    # The ancient backup was shifted to .2 by the rollover, then pruned.
    assert not (tmp_path / "app.log.2").exists()
    assert (tmp_path / "app.log.1").read_text(encoding="utf-8") == LINE + "\n"
    assert unrelated.exists()


def test_rollover_keeps_pruning_off_when_age_is_zero(tmp_path, handlers):
    path = tmp_path / "app.log"
    old = tmp_path / "app.log.1"
    old.write_text("old\n", encoding="utf-8")
    long_ago = time.time() - 400 * 24 * 60 * 60
    os.utime(old, (long_ago, long_ago))

    handler = handlers(path, max_bytes=20, max_age_days=0, compress=False)
    _emit(handler, LINE)
    _emit(handler, LINE)

    assert (tmp_path / "app.log.2").read_text(encoding="utf-8") == "old\n"
