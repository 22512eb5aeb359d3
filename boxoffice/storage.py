import os
import re
from abc import ABC, abstractmethod


class ArtifactStorage(ABC):
    @abstractmethod
    def upload(self, data: bytes, name: str) -> str:
        """Store ``data`` and return a URL it can be fetched from."""


class LocalArtifactStorage(ArtifactStorage):
    """Writes artifacts to a directory the app serves under /artifacts."""

    def __init__(self, directory: str, base_url: str):
        self.directory = directory
        self.base_url = base_url.rstrip("/")
        os.makedirs(directory, exist_ok=True)

    def upload(self, data: bytes, name: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", name)
        with open(os.path.join(self.directory, safe), "wb") as f:
            f.write(data)
        return f"{self.base_url}/{safe}"
