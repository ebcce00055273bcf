from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Session:
    email: str | None = None
    employee_id: str | None = None

    @property
    def logged_in(self) -> bool:
        return bool(self.employee_id)


class SessionStore:
    """Persisted login identity with a load/store/clear contract."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Session:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Session()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable session file %s", self._path)
            return Session()
        if not isinstance(data, dict):
            return Session()
        email = data.get("email")
        employee_id = data.get("employee_id")
        return Session(
            email=email if isinstance(email, str) and email else None,
            employee_id=employee_id if isinstance(employee_id, str) and employee_id else None,
        )

    def store(self, session: Session) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(
            json.dumps({"email": session.email, "employee_id": session.employee_id}, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp, self._path)

    def clear(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
