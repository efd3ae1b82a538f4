import json
from pathlib import Path
from time import strftime
from typing import Optional


class SessionStorage:
    def __init__(self, root: str, name: str = "session"):
        self.root = Path(root)
        self.name = name
        self.session_dir: Optional[Path] = None
        self.logs_dir: Optional[Path] = None

    def begin(self) -> str:
        sid = f"{self.name}_{strftime('%Y%m%d_%H%M%S')}"
        self.session_dir = self.root / sid
        self.logs_dir = self.session_dir / "logs"
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        return str(self.session_dir)

    def write_manifest(self, meta: dict):
        with open(self.session_dir / "config.json", "w") as fp:
            json.dump(meta, fp, indent=2)
