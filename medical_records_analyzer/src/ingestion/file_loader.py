import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Dict
from loguru import logger


@dataclass
class UploadedDocument:
    name: str
    mime_type: str
    data: bytes


class FileLoader:
    def __init__(self, input_dir: str):
        self.input_dir = Path(input_dir)

        if not self.input_dir.exists():
            raise FileNotFoundError(f"Input directory not found: {self.input_dir}")

    @staticmethod
    def guess_mime_type(file_path: Path) -> str:
        """Guess the MIME type from the extension, as a browser upload would declare it."""
        mime_type, _ = mimetypes.guess_type(file_path.name)
        return mime_type or "application/octet-stream"

    def load_files(self) -> Dict[str, UploadedDocument]:
        """Load every regular, non-hidden file in the input directory as raw bytes."""
        documents: Dict[str, UploadedDocument] = {}

        files = sorted(p for p in self.input_dir.iterdir() if p.is_file() and not p.name.startswith("."))
        logger.info(f"Found {len(files)} files in {self.input_dir}")

        for file_path in files:
            try:
                documents[file_path.name] = UploadedDocument(
                    name=file_path.name,
                    mime_type=self.guess_mime_type(file_path),
                    data=file_path.read_bytes(),
                )
                logger.debug(f"Loaded: {file_path.name}")
            except OSError as e:
                logger.error(f"Failed to load {file_path.name}: {e}")

        logger.info(f"Successfully loaded {len(documents)} files")
        return documents
