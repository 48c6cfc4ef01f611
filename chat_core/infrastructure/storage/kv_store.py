"""键值存储后端。

- JsonFileKeyValueStore: 每个 key 一个 JSON 文件，先写临时文件再 os.replace，
  多个 key 的写入中途失败时把已替换的文件从备份还原。
- MemoryKeyValueStore: 纯内存实现，测试与无持久化场景使用。

两者都按"最后一次写入为准"处理并发写，不做冲突合并。
"""

import asyncio
import copy
import json
import os
import re
import shutil
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import KeyValueStore
from chat_core.domain.exceptions import BusinessError


_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonFileKeyValueStore(KeyValueStore):
    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    async def get(self, key: str) -> Any:
        return await asyncio.to_thread(self._read, key)

    async def set(self, items: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._write_many, dict(items))

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise BusinessError(code="INVALID_KEY", message=f"Invalid storage key: {key!r}")
        return self._root / f"{key}.json"

    def _read(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=f"{key}: {e}")

    def _write_many(self, items: Dict[str, Any]) -> None:
        # 第一阶段：全部写入临时文件；任何一个失败则清理并放弃，正式文件保持不变
        staged: List[Tuple[Path, Path]] = []
        try:
            for key, value in items.items():
                path = self._path(key)
                tmp_path = self._root / f"{key}.{uuid4().hex}.json.tmp"
                staged.append((tmp_path, path))
                tmp_path.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
        except BusinessError:
            self._discard(staged)
            raise
        except (OSError, TypeError, ValueError) as e:
            self._discard(staged)
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        # 第二阶段：先备份现有正式文件，再逐个替换；中途失败时把已替换的文件还原
        backups: List[Tuple[Path, Path | None]] = []
        committed: List[Tuple[Path, Path | None]] = []
        try:
            for _, path in staged:
                backup = None
                if path.exists():
                    backup = self._root / f"{path.stem}.{uuid4().hex}.json.bak"
                    shutil.copy2(path, backup)
                backups.append((path, backup))
            for (tmp_path, path), entry in zip(staged, backups):
                os.replace(tmp_path, path)
                committed.append(entry)
        except OSError as e:
            self._rollback(committed)
            self._discard(staged)
            self._drop_backups(backups)
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        self._drop_backups(backups)

    def _remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def _clear(self) -> None:
        try:
            for path in self._root.glob("*.json"):
                path.unlink()
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    @staticmethod
    def _rollback(committed: List[Tuple[Path, Path | None]]) -> None:
        for path, backup in reversed(committed):
            if backup is None:
                path.unlink(missing_ok=True)
            else:
                os.replace(backup, path)

    @staticmethod
    def _drop_backups(backups: List[Tuple[Path, Path | None]]) -> None:
        for _, backup in backups:
            if backup is None:
                continue
            try:
                backup.unlink(missing_ok=True)
            except OSError:
                continue

    @staticmethod
    def _discard(staged: List[Tuple[Path, Path]]) -> None:
        for tmp_path, _ in staged:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                continue


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))

    async def get(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    async def set(self, items: Mapping[str, Any]) -> None:
        staged = {k: copy.deepcopy(v) for k, v in items.items()}
        self._data.update(staged)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()
