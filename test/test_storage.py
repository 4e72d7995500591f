from datetime import datetime

import pytest
from botocore.exceptions import ClientError

from storage import s3_client
from storage.s3_client import LocalStorage, S3Client
from storage.s3_paths import device_image_path


class FakeS3:
    def __init__(self, bucket_exists=True):
        self.bucket_exists = bucket_exists
        self.created = []
        self.objects = {}

    def head_bucket(self, Bucket):
        if not self.bucket_exists:
            raise ClientError({"Error": {"Code": "404"}}, "HeadBucket")

    def create_bucket(self, Bucket, **kwargs):
        self.created.append((Bucket, kwargs))

    def put_object(self, Bucket, Key, Body, **kwargs):
        self.objects[Key] = (Body, kwargs)

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)


@pytest.fixture
def fake_s3(monkeypatch):
    fake = FakeS3(bucket_exists=False)
    monkeypatch.setattr(s3_client.boto3, "client", lambda *args, **kwargs: fake)
    return fake


def test_device_image_path_layout():
    path = device_image_path(7, "../My Laptop.png", now=datetime(2024, 5, 2))
    assert path.startswith("device-images/user_id=7/2024/05/")
    assert path.endswith("-My_Laptop.png")
    assert ".." not in path


def test_local_storage_round_trip(tmp_path):
    storage = LocalStorage(tmp_path, "/uploads/")
    url = storage.upload("device-images/a.jpg", b"data", "image/jpeg")
    assert url == "/uploads/device-images/a.jpg"
    assert (tmp_path / "device-images" / "a.jpg").read_bytes() == b"data"
    assert storage.delete("device-images/a.jpg") is True
    assert storage.delete("device-images/a.jpg") is False


def test_local_storage_rejects_escape(tmp_path):
    storage = LocalStorage(tmp_path / "root")
    with pytest.raises(ValueError):
        storage.upload("../outside.jpg", b"x")


def test_s3_creates_missing_bucket_outside_us_east(fake_s3):
    S3Client("devices", region_name="eu-west-1")
    assert fake_s3.created == [("devices", {"CreateBucketConfiguration": {"LocationConstraint": "eu-west-1"}})]


def test_s3_upload_returns_public_url(fake_s3):
    client = S3Client("devices", public_base_url="https://cdn.example.com/")
    url = client.upload("device-images/a.jpg", b"data", "image/jpeg")
    assert url == "https://cdn.example.com/device-images/a.jpg"
    assert fake_s3.objects["device-images/a.jpg"] == (b"data", {"ContentType": "image/jpeg"})

    client.delete("device-images/a.jpg")
    assert fake_s3.objects == {}


def test_s3_public_url_variants(fake_s3):
    assert S3Client("devices", endpoint_url="http://minio:9000/").get_public_url("k") == "http://minio:9000/devices/k"
    assert S3Client("devices", region_name="us-east-1").get_public_url("k") == "https://devices.s3.us-east-1.amazonaws.com/k"
