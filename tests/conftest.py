from collections.abc import Callable
from pathlib import Path

import pytest


@pytest.fixture()
def evm_addresses() -> list[str]:
    """Three distinct, well-formed lower-case EVM addresses."""
    return [
        "0x" + "a" * 40,
        "0x" + "b" * 40,
        "0x" + "1234567890" * 4,
    ]


@pytest.fixture()
def write_address_file(tmp_path: Path) -> Callable[..., Path]:
    """Write raw content to an address file under tmp_path and return its path."""

    def _write(content: str | bytes, name: str = "addresses.txt") -> Path:
        path = tmp_path / name
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
        return path

    return _write
