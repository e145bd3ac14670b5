import pytest

from gt06_codec.errors import InvalidIdentifier
from gt06_codec.identifier import decode_imei, encode_imei


class TestEncodeImei:
    def test_fifteen_digits_are_zero_padded(self):
        assert encode_imei("123456789012345") == bytes.fromhex("0123456789012345")

    def test_sixteen_digits(self):
        assert encode_imei("1234567890123456") == bytes.fromhex("1234567890123456")

    @pytest.mark.parametrize("imei", ["12345", "12345678901234567", "12345678901234a", "", "12345678901234 "])
    def test_rejects_malformed(self, imei):
        with pytest.raises(InvalidIdentifier):
            encode_imei(imei)

    def test_invalid_identifier_is_value_error(self):
        with pytest.raises(ValueError):
            encode_imei("not an imei")


class TestDecodeImei:
    def test_strips_padding(self):
        assert decode_imei(bytes.fromhex("0356860820045174")) == "356860820045174"

    def test_round_trip(self):
        assert decode_imei(encode_imei("123456789012345")) == "123456789012345"
        assert decode_imei(encode_imei("1234567890123456")) == "1234567890123456"

    def test_all_zero(self):
        assert decode_imei(bytes(8)) == "0"

    def test_rejects_non_decimal_nibble(self):
        with pytest.raises(InvalidIdentifier):
            decode_imei(bytes.fromhex("0123456789ABCDEF"))

    @pytest.mark.parametrize("size", [0, 7, 9])
    def test_rejects_wrong_size(self, size):
        with pytest.raises(InvalidIdentifier):
            decode_imei(bytes(size))
