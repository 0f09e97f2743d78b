"""Tests for the GPS rational codec and EXIF geotag handling."""
from __future__ import annotations

import struct

import numpy as np
import piexif
import pytest
from PIL import Image


# ── Rational / GPSRational ────────────────────────────────────────────────────

class TestRational:
    def test_bytes_layout(self):
        from geopicture.metadata.gps import Rational
        assert Rational(55, 1).to_bytes() == struct.pack("<ii", 55, 1)

    def test_int64_form(self):
        from geopicture.metadata.gps import Rational
        r = Rational(23, 1)
        assert r.to_int64() == (1 << 32) | 23
        assert Rational.from_int64(r.to_int64()) == r

    def test_float_rounds_to_five_digits(self):
        from geopicture.metadata.gps import Rational
        assert float(Rational(1, 3)) == 0.33333
        assert float(Rational(5, 0)) == 0.0

    def test_decode_variants(self):
        from geopicture.metadata.gps import Rational
        assert Rational.decode((1, 200)) == Rational(1, 200)
        assert Rational.decode(struct.pack("<ii", 7, 2)) == Rational(7, 2)
        assert Rational.decode(None) is None
        assert Rational.decode("1/200") is None


class TestGPSRational:
    @pytest.mark.parametrize("angle", [55.4, -11.2, 0.0, 89.999, 179.99972])
    def test_round_trip(self, angle):
        from geopicture.metadata.gps import GPSRational
        encoded = GPSRational.from_angle(angle)
        decoded = GPSRational.from_bytes(encoded.to_bytes())
        assert decoded == encoded
        assert abs(decoded.angle - abs(angle)) <= 1 / 3600

    def test_components(self):
        from geopicture.metadata.gps import GPSRational, Rational
        gps = GPSRational.from_angle(55.4)
        assert gps.degrees == Rational(55, 1)
        assert gps.minutes == Rational(23, 1)
        assert gps.seconds.denominator == 1
        assert gps.angle == pytest.approx(55.4, abs=1 / 3600)

    def test_seconds_are_rounded(self):
        from geopicture.metadata.gps import GPSRational
        assert GPSRational.from_angle(10 + 1.6 / 3600).seconds.numerator == 2
        assert GPSRational.from_angle(10 + 1.4 / 3600).seconds.numerator == 1

    def test_byte_layout(self):
        from geopicture.metadata.gps import GPSRational
        data = GPSRational.from_angle(12.5).to_bytes()
        assert len(data) == 24
        assert struct.unpack("<6i", data) == (12, 1, 30, 1, 0, 1)

    def test_int64_round_trip(self):
        from geopicture.metadata.gps import GPSRational
        gps = GPSRational.from_angle(48.8566)
        assert GPSRational.from_int64s(gps.to_int64s()) == gps
        assert GPSRational.decode(gps.to_int64s()) == gps

    def test_decode_piexif_tuples(self):
        from geopicture.metadata.gps import GPSRational
        gps = GPSRational.decode(((40, 1), (26, 1), (4608, 100)))
        assert gps.angle == pytest.approx(40 + 26 / 60 + 46.08 / 3600)

    def test_decode_rejects_garbage(self):
        from geopicture.metadata.gps import GPSRational
        assert GPSRational.decode(None) is None
        assert GPSRational.decode(b"\x00" * 10) is None
        assert GPSRational.decode(((1, 1), (2, 1))) is None
        assert GPSRational.decode(("a", "b", "c")) is None

    def test_from_bytes_too_short(self):
        from geopicture.metadata.gps import GPSRational
        with pytest.raises(ValueError):
            GPSRational.from_bytes(b"\x00" * 16)

    @pytest.mark.parametrize("ref,sign", [(b"S", -1), ("W", -1), (b"N\x00", 1), ("E", 1), (None, 1)])
    def test_reference_sign(self, ref, sign):
        from geopicture.metadata.gps import GPSRational, signed_angle
        gps = GPSRational.from_angle(10.0)
        assert signed_angle(gps, ref) == sign * 10.0


class TestGeoLocation:
    def test_refs(self):
        from geopicture.metadata.gps import GeoLocation
        loc = GeoLocation(-33.9, -70.6)
        assert (loc.latitude_ref, loc.longitude_ref) == ("S", "W")
        assert (GeoLocation(0.0, 0.0).latitude_ref, GeoLocation(0.0, 0.0).longitude_ref) == ("N", "E")

    def test_parse(self):
        from geopicture.metadata.gps import GeoLocation
        assert GeoLocation.parse("55.4, 12.5") == GeoLocation(55.4, 12.5)
        with pytest.raises(ValueError):
            GeoLocation.parse("95, 0")
        with pytest.raises(ValueError):
            GeoLocation.parse("1, 2, 3")


# ── EXIF geotags ──────────────────────────────────────────────────────────────

def _camera_exif() -> bytes:
    return piexif.dump({
        "0th": {piexif.ImageIFD.Model: b"Canon EOS R5", piexif.ImageIFD.DateTime: b"2021:06:01 08:00:00"},
        "Exif": {
            piexif.ExifIFD.ExposureTime: (1, 200),
            piexif.ExifIFD.FNumber: (8, 1),
            piexif.ExifIFD.FocalLength: (35, 1),
            piexif.ExifIFD.ISOSpeedRatings: 100,
            piexif.ExifIFD.DateTimeOriginal: b"2021:06:01 12:34:56",
        },
        "GPS": {},
        "1st": {},
        "thumbnail": None,
    })


class TestGeotag:
    def test_no_geotag(self, tmp_path, make_jpeg):
        from geopicture.metadata.exif import get_geotag
        path = tmp_path / "plain.jpg"
        path.write_bytes(make_jpeg(32, 16))
        assert get_geotag(path) is None

    @pytest.mark.parametrize("lat,lon", [(55.4, 12.5), (-33.9, -70.6), (0.0, 0.0)])
    def test_set_and_get(self, tmp_path, make_jpeg, lat, lon):
        from geopicture.metadata.exif import get_geotag, set_geotag
        from geopicture.metadata.gps import GeoLocation
        src = tmp_path / "src.jpg"
        dst = tmp_path / "dst.jpg"
        src.write_bytes(make_jpeg(40, 30))
        set_geotag(src, dst, GeoLocation(lat, lon))

        location = get_geotag(dst)
        assert location.latitude == pytest.approx(lat, abs=1 / 3600)
        assert location.longitude == pytest.approx(lon, abs=1 / 3600)
        assert get_geotag(src) is None

    def test_pixels_untouched(self, tmp_path, make_jpeg):
        from geopicture.metadata.exif import set_geotag
        from geopicture.metadata.gps import GeoLocation
        src = tmp_path / "src.jpg"
        src.write_bytes(make_jpeg(40, 30, color=(10, 120, 230)))
        set_geotag(src, src, GeoLocation(1.0, 2.0))
        with Image.open(src) as img:
            assert img.size == (40, 30)
            assert np.asarray(img).shape == (30, 40, 3)

    def test_keeps_camera_tags(self, tmp_path, make_jpeg):
        from geopicture.metadata.exif import metadata_summary, set_geotag
        from geopicture.metadata.gps import GeoLocation
        src = tmp_path / "cam.jpg"
        dst = tmp_path / "cam_tagged.jpg"
        src.write_bytes(make_jpeg(16, 16, exif=_camera_exif()))
        set_geotag(src, dst, GeoLocation(10.0, 20.0))
        assert metadata_summary(dst) == metadata_summary(src)

    def test_refs_written(self, tmp_path, make_jpeg):
        from geopicture.metadata.exif import set_geotag
        from geopicture.metadata.gps import GeoLocation
        src = tmp_path / "src.jpg"
        dst = tmp_path / "dst.jpg"
        src.write_bytes(make_jpeg(8, 8))
        set_geotag(src, dst, GeoLocation(-1.5, 100.25))
        gps = piexif.load(str(dst))["GPS"]
        assert gps[piexif.GPSIFD.GPSLatitudeRef] == b"S"
        assert gps[piexif.GPSIFD.GPSLongitudeRef] == b"E"
        assert gps[piexif.GPSIFD.GPSLongitude] == ((100, 1), (15, 1), (0, 1))

    def test_png_rejected(self, tmp_path):
        from geopicture.errors import UnsupportedFormatError
        from geopicture.metadata.exif import set_geotag
        from geopicture.metadata.gps import GeoLocation
        src = tmp_path / "src.png"
        Image.new("RGB", (4, 4)).save(src)
        with pytest.raises(UnsupportedFormatError):
            set_geotag(src, tmp_path / "dst.png", GeoLocation(1.0, 1.0))
        assert not (tmp_path / "dst.png").exists()

    def test_unserializable_exif(self, tmp_path, make_jpeg, monkeypatch):
        from geopicture.errors import UnsupportedFormatError
        from geopicture.metadata import exif
        from geopicture.metadata.gps import GeoLocation

        def refuse(exif_dict):
            raise ValueError('"dump" got wrong type of exif value.')

        monkeypatch.setattr(exif.piexif, "dump", refuse)
        src = tmp_path / "src.jpg"
        src.write_bytes(make_jpeg(8, 8))
        with pytest.raises(UnsupportedFormatError, match="re-serialize"):
            exif.set_geotag(src, tmp_path / "dst.jpg", GeoLocation(1.0, 1.0))
        assert not (tmp_path / "dst.jpg").exists()

    def test_verify_pixels_detects_change(self, make_jpeg):
        from geopicture.errors import PixelIntegrityError
        from geopicture.metadata.exif import verify_pixels
        a = make_jpeg(16, 16, color=(0, 0, 0))
        b = make_jpeg(16, 16, color=(255, 255, 255))
        c = make_jpeg(16, 8, color=(0, 0, 0))
        verify_pixels(a, a)
        with pytest.raises(PixelIntegrityError):
            verify_pixels(a, b)
        with pytest.raises(PixelIntegrityError, match="dimensions"):
            verify_pixels(a, c)


class TestMetadataSummary:
    def test_summary_line(self, tmp_path, make_jpeg):
        from geopicture.metadata.exif import metadata_summary
        path = tmp_path / "cam.jpg"
        path.write_bytes(make_jpeg(16, 16, exif=_camera_exif()))
        assert metadata_summary(path) == "Canon EOS R5, 0.005s, f/8, 35mm, ISO100, 2021-06-01 12:34:56"

    def test_empty_summary(self, tmp_path, make_jpeg):
        from geopicture.metadata.exif import metadata_summary
        path = tmp_path / "plain.jpg"
        path.write_bytes(make_jpeg(8, 8))
        assert metadata_summary(path) == ""

    def test_summary_of_non_exif_file(self, tmp_path):
        from geopicture.metadata.exif import metadata_summary
        path = tmp_path / "plain.png"
        Image.new("L", (4, 4)).save(path)
        assert metadata_summary(path) == ""

    def test_timestamp(self, tmp_path, make_jpeg):
        from datetime import datetime
        from geopicture.metadata.exif import get_timestamp
        path = tmp_path / "cam.jpg"
        path.write_bytes(make_jpeg(8, 8, exif=_camera_exif()))
        assert get_timestamp(path) == datetime(2021, 6, 1, 12, 34, 56)

    def test_timestamp_falls_back_to_datetime(self):
        from datetime import datetime
        from geopicture.metadata.exif import timestamp_from_exif
        exif = {"0th": {piexif.ImageIFD.DateTime: b"2020:01:02 03:04:05"}, "Exif": {}}
        assert timestamp_from_exif(exif) == datetime(2020, 1, 2, 3, 4, 5)
        assert timestamp_from_exif({"0th": {}, "Exif": {}}) is None
        bad = {"Exif": {piexif.ExifIFD.DateTimeOriginal: b"not a date"}}
        assert timestamp_from_exif(bad) is None


class TestLoadExif:
    def test_exif_from_bytes_in_memory(self, make_jpeg):
        from geopicture.metadata.exif import summarize
        data = make_jpeg(8, 8, exif=_camera_exif())
        exif = piexif.load(data)
        assert summarize(exif).startswith("Canon EOS R5")
