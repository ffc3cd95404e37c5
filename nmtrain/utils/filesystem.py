# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Atomic file writes for model snapshots and validation reports.

A checkpoint slot is overwritten in place when the rotation wraps around, so
a crash mid-write must never leave a truncated snapshot behind. Everything is
written to a temp file in the target directory and renamed over the target;
rename within one filesystem is atomic on POSIX.
"""

import io
import tempfile
from pathlib import Path

import torch


def _atomic_replace(target_path: Path, data: bytes) -> None:
    target_path.parent.mkdir(parents=True, exist_ok=True)

    # delete=False: the file has to outlive close() so it can be renamed.
    temp_fd = tempfile.NamedTemporaryFile(
        mode="wb",
        dir=str(target_path.parent),
        prefix=".nmtrain_tmp_",
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(temp_fd.name)

    try:
        temp_fd.write(data)
        temp_fd.flush()
        temp_fd.close()
        temp_path.replace(target_path)
    except BaseException:
        temp_fd.close()
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_write(target_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write text to a file atomically.

    Raises:
        OSError: If the write or rename fails. The target is left untouched.
    """
    _atomic_replace(target_path, content.encode(encoding))


def atomic_torch_save(obj: object, target_path: Path) -> None:
    """
    Serialize `obj` with torch.save and write it atomically.

    The payload is built in memory first, so a serialization error never
    creates a temp file at all.

    Raises:
        OSError: If the write or rename fails.
    """
    buffer = io.BytesIO()
    torch.save(obj, buffer)
    _atomic_replace(target_path, buffer.getvalue())
