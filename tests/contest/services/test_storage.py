import pytest
from botocore.exceptions import ClientError

from contest.services.storage import S3Storage, StorageError, build_object_key


def _client_error(operation: str) -> ClientError:
    return ClientError({'Error': {'Code': 'InternalError', 'Message': 'boom'}}, operation)


class FakeS3Client:
    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.calls = []

    def _record(self, operation: str, **kwargs):
        self.calls.append((operation, kwargs))
        if operation in self.fail_on:
            raise _client_error(operation)

    def put_object(self, **kwargs):
        self._record('PutObject', **kwargs)

    def delete_object(self, **kwargs):
        self._record('DeleteObject', **kwargs)

    def generate_presigned_url(self, client_method, Params, ExpiresIn):
        self._record('GeneratePresignedUrl', client_method=client_method, Params=Params, ExpiresIn=ExpiresIn)
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


def test_build_object_key_keeps_lowercase_extension() -> None:
    key = build_object_key('Рисунок.PNG')

    assert key.startswith('works/')
    assert key.endswith('.png')
    assert build_object_key('Рисунок.PNG') != key


def test_put_uploads_with_utf8_content_disposition() -> None:
    client = FakeS3Client()
    storage = S3Storage(client=client, bucket='contest')

    stored = storage.put(b'data', 'Письмо.pdf', 'application/pdf')

    operation, kwargs = client.calls[0]
    assert operation == 'PutObject'
    assert kwargs['Bucket'] == 'contest'
    assert kwargs['Key'] == stored.key
    assert kwargs['ContentType'] == 'application/pdf'
    assert kwargs['ContentDisposition'].startswith("inline; filename*=UTF-8''%D0%9F")
    assert stored.size == 4


def test_put_failure_raises_storage_error() -> None:
    storage = S3Storage(client=FakeS3Client(fail_on={'PutObject'}), bucket='contest')

    with pytest.raises(StorageError):
        storage.put(b'data', 'essay.pdf', 'application/pdf')


def test_signed_url_uses_default_ttl() -> None:
    storage = S3Storage(client=FakeS3Client(), bucket='contest')

    assert storage.signed_url('works/a.pdf') == 'https://s3.test/contest/works/a.pdf?X-Amz-Expires=3600'
    assert storage.signed_url('works/a.pdf', ttl_seconds=60).endswith('X-Amz-Expires=60')


def test_delete_failure_is_swallowed(caplog: pytest.LogCaptureFixture) -> None:
    storage = S3Storage(client=FakeS3Client(fail_on={'DeleteObject'}), bucket='contest')

    storage.delete('works/missing.pdf')

    assert 'works/missing.pdf' in caplog.text
