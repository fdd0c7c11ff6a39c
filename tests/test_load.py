import pytest

import mpfs2c
from mpfs2c import ErrorKind, Mpfs2cError, load_image


def test_returns_file_contents(tmp_path):
    image = tmp_path / 'mpfs.bin'
    image.write_bytes(b'MPFS\x02\x01\xff')
    assert load_image(str(image)) == b'MPFS\x02\x01\xff'


def test_size_at_limit_is_accepted(tmp_path):
    image = tmp_path / 'mpfs.bin'
    image.write_bytes(bytes(64))
    assert len(load_image(str(image), max_size=64)) == 64


def test_size_over_limit_fails(tmp_path):
    image = tmp_path / 'mpfs.bin'
    image.write_bytes(bytes(65))
    with pytest.raises(Mpfs2cError) as excinfo:
        load_image(str(image), max_size=64)
    assert excinfo.value.kind is ErrorKind.TOO_LARGE


def test_missing_file_is_not_readable(tmp_path):
    with pytest.raises(Mpfs2cError) as excinfo:
        load_image(str(tmp_path / 'missing.bin'))
    assert excinfo.value.kind is ErrorKind.NOT_READABLE
    assert 'missing.bin' in str(excinfo.value)


def test_directory_is_not_readable(tmp_path):
    with pytest.raises(Mpfs2cError) as excinfo:
        load_image(str(tmp_path))
    assert excinfo.value.kind is ErrorKind.NOT_READABLE


def test_io_failure_is_read_error(tmp_path, monkeypatch):
    image = tmp_path / 'mpfs.bin'
    image.write_bytes(b'abc')

    def broken_open(*args, **kwargs):
        raise OSError('device error')

    monkeypatch.setattr(mpfs2c, 'open', broken_open, raising=False)
    with pytest.raises(Mpfs2cError) as excinfo:
        load_image(str(image))
    assert excinfo.value.kind is ErrorKind.READ_ERROR
