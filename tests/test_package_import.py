"""The storage layer imports without the web stack; the app loads on demand."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Dict, Iterator

import pytest

from userapi.config import Settings


def _userapi_modules() -> Dict[str, object]:
    return {name: module for name, module in sys.modules.items() if name == "userapi" or name.startswith("userapi.")}


@pytest.fixture()
def fresh_userapi() -> Iterator[None]:
    saved = _userapi_modules()
    for name in saved:
        sys.modules.pop(name)
    try:
        yield
    finally:
        for name in _userapi_modules():
            sys.modules.pop(name)
        sys.modules.update(saved)


def test_importing_package_does_not_load_web_app(fresh_userapi: None) -> None:
    package = importlib.import_module("userapi")

    assert hasattr(package, "UserStore")
    assert "userapi.api" not in sys.modules


def test_store_works_without_fastapi(
    fresh_userapi: None, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setitem(sys.modules, "fastapi", None)

    package = importlib.import_module("userapi")
    database = package.Database(tmp_path / "users.sqlite3")
    try:
        database.initialize()
        store = package.UserStore(database)
        ctx = package.RequestContext.background()
        created = store.create(ctx, package.UserRequest(name="Ada", email="ada@x.io"))
        assert store.get(ctx, created.id) == created
    finally:
        database.close()

    with pytest.raises(ImportError):
        package.create_app(database=database)


def test_create_app_loads_web_app_on_first_use(fresh_userapi: None, tmp_path: Path) -> None:
    package = importlib.import_module("userapi")
    database = package.Database(tmp_path / "users.sqlite3")
    database.initialize()
    try:
        app = package.create_app(database=database, settings=Settings(database_path=database.path))

        assert "userapi.api" in sys.modules
        assert app.title == "User API"
    finally:
        database.close()
