from io import BytesIO

from starlette.datastructures import Headers, UploadFile


def make_upload(
    content: bytes = b'%PDF-1.4 contest entry',
    filename: str = 'letter.pdf',
    content_type: str = 'application/pdf',
) -> UploadFile:
    return UploadFile(file=BytesIO(content), filename=filename, headers=Headers({'content-type': content_type}))


def scheduled(background_tasks) -> list[tuple]:
    """Arguments of every task queued on ``background_tasks``."""
    return [task.args for task in background_tasks.tasks]
