import json
import zipfile
from pathlib import Path
from typing import Any, Callable

import pytest

from wxz_support import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_archive(tmp_path: Path) -> Callable[..., Path]:
    def _make(entries: list[tuple[str, Any]], name: str = "export.wxz") -> Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as handle:
            for entry_name, payload in entries:
                if isinstance(payload, (bytes, str)):
                    handle.writestr(entry_name, payload)
                else:
                    handle.writestr(entry_name, json.dumps(payload))
        return path

    return _make
