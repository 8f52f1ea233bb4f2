import asyncio
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from converter_backend.asset_store import AssetReference, AssetStore
from converter_backend.exceptions import AssetNotFound, RemoteUploadError


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def s3_client():
    client = MagicMock()
    client.generate_presigned_url.side_effect = lambda op, Params, ExpiresIn: f"https://bucket.test/{Params['Key']}?sig"
    return client


@pytest.fixture
def store(s3_client):
    return AssetStore(s3_client, bucket="converter-assets", url_expiration=600)


class TestPushFile:
    def test_uploads_under_unique_key(self, store, s3_client, tmp_path) -> None:
        local = tmp_path / "report.pdf"
        local.write_bytes(b"%PDF-1.4 data")

        reference = asyncio.run(store.push_file(local, "Quarterly Report.pdf", folder="pdfs"))

        filename, bucket, key = s3_client.upload_file.call_args.args
        assert filename == str(local)
        assert bucket == "converter-assets"
        assert key == reference.asset_id
        assert key.startswith("pdfs/quarterly-report_") and key.endswith(".pdf")
        assert s3_client.upload_file.call_args.kwargs["ExtraArgs"] == {"ContentType": "application/pdf"}
        assert reference.url == f"https://bucket.test/{key}?sig"
        assert reference.size == len(b"%PDF-1.4 data")
        assert reference.format == "pdf"

    def test_same_name_gets_distinct_keys(self, store, tmp_path) -> None:
        local = tmp_path / "a.png"
        local.write_bytes(b"png")

        first = asyncio.run(store.push_file(local, "a.png"))
        second = asyncio.run(store.push_file(local, "a.png"))

        assert first.asset_id != second.asset_id

    def test_provider_rejection_is_remote_upload_error(self, store, s3_client, tmp_path) -> None:
        local = tmp_path / "a.pdf"
        local.write_bytes(b"pdf")
        s3_client.upload_file.side_effect = _client_error("AccessDenied", "PutObject")

        with pytest.raises(RemoteUploadError):
            asyncio.run(store.push_file(local, "a.pdf"))

        assert s3_client.upload_file.call_count == 1

    def test_missing_local_file_is_remote_upload_error(self, store, s3_client, tmp_path) -> None:
        with pytest.raises(RemoteUploadError, match="Upload to asset host failed"):
            asyncio.run(store.push_file(tmp_path / "vanished.pdf", "vanished.pdf"))

        s3_client.upload_file.assert_not_called()

    def test_unconfigured_bucket(self, s3_client, tmp_path) -> None:
        store = AssetStore(s3_client, bucket="")

        with pytest.raises(RemoteUploadError, match="not configured"):
            asyncio.run(store.push_file(tmp_path / "a.pdf", "a.pdf"))

        s3_client.upload_file.assert_not_called()


class TestPushBuffer:
    def test_puts_bytes(self, store, s3_client) -> None:
        reference = asyncio.run(store.push_buffer(b"jpegbytes", "photo.jpg", folder="image-enhanced"))

        kwargs = s3_client.put_object.call_args.kwargs
        assert kwargs["Body"] == b"jpegbytes"
        assert kwargs["ContentType"] == "image/jpeg"
        assert kwargs["Key"] == reference.asset_id
        assert reference.size == 9
        assert reference.format == "jpg"

    def test_network_failure(self, store, s3_client) -> None:
        s3_client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.test")

        with pytest.raises(RemoteUploadError):
            asyncio.run(store.push_buffer(b"data", "a.pdf"))


class TestDeleteAsset:
    def test_failure_is_swallowed(self, store, s3_client) -> None:
        s3_client.delete_object.side_effect = _client_error("InternalError", "DeleteObject")
        reference = AssetReference(url="u", asset_id="pdfs/a.pdf", size=1, format="pdf")

        asyncio.run(store.delete_asset(reference))

        s3_client.delete_object.assert_called_once_with(Bucket="converter-assets", Key="pdfs/a.pdf")


class TestDescribeAsset:
    def test_returns_metadata(self, store, s3_client) -> None:
        s3_client.head_object.return_value = {"ContentLength": 2048, "ContentType": "application/pdf"}

        info = asyncio.run(store.describe_asset("pdfs/a.pdf"))

        assert info.asset_id == "pdfs/a.pdf"
        assert info.size == 2048
        assert info.format == "pdf"
        assert info.url == "https://bucket.test/pdfs/a.pdf?sig"

    def test_missing_object_is_not_found(self, store, s3_client) -> None:
        s3_client.head_object.side_effect = _client_error("404", "HeadObject")

        with pytest.raises(AssetNotFound):
            asyncio.run(store.describe_asset("pdfs/missing.pdf"))
