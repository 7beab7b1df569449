import asyncio
import json
import traceback
import os
from config.settings import get_settings
from ingestion.file_loader import FileLoader, UploadedDocument
from app.graph import build_analyzer, MedicalRecordsAnalyzer


async def _process_one(document: UploadedDocument, analyzer: MedicalRecordsAnalyzer, output_dir: str) -> str:
    result = await analyzer.analyze(document.data, document.mime_type, document.name)

    output_path = f"{output_dir}/{document.name}.json"
    tmp_path = output_path + ".tmp"
    with open(tmp_path, "w") as f:
        json.dump(result.to_json(), f, indent=2)
    os.replace(tmp_path, output_path)
    return output_path


async def _run(documents, analyzer: MedicalRecordsAnalyzer, output_dir: str, workers: int):
    # Documents are independent; each still runs its own sequential pipeline
    semaphore = asyncio.Semaphore(workers)

    async def bounded(document: UploadedDocument):
        async with semaphore:
            return await _process_one(document, analyzer, output_dir)

    results = await asyncio.gather(
        *(bounded(d) for d in documents.values()), return_exceptions=True
    )
    for document, outcome in zip(documents.values(), results):
        if isinstance(outcome, Exception):
            print(f"Error: {document.name}: {outcome}")


def main():
    try:
        settings = get_settings()

        loader = FileLoader(settings.input_dir)
        documents = loader.load_files()

        os.makedirs(settings.output_dir, exist_ok=True)
        analyzer = build_analyzer(settings)

        workers = int(os.getenv("WORKERS", "4"))
        asyncio.run(_run(documents, analyzer, settings.output_dir, workers))

    except Exception as e:
        print(f"Error: {e}")
        print(traceback.format_exc())
        raise e

if __name__ == "__main__":
    main()
