"""
Message Vector Codec Tests
==========================
"""

import pytest

from digilocker import message_codec
from digilocker.errors import UnknownCredentialTypeError, UnknownDisclosedFieldError
from digilocker.message_codec import CredentialType


HOLDER = "did:ethr:0x742d35cC6634C0532925A3B844BC9e7595f8C1F5"
ISSUER = "did:ethr:0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

STUDENT = {
    "name": "Alice",
    "rollNumber": "21CS001",
    "dateOfBirth": "2003-04-12",
    "department": "CSE",
    "id": HOLDER,
}


class TestCredentialType:
    def test_parse_accepts_value_and_display_names(self):
        assert CredentialType.parse("StudentID") is CredentialType.STUDENT_ID
        assert CredentialType.parse("Student ID") is CredentialType.STUDENT_ID
        assert CredentialType.parse("Academic Certificate") is CredentialType.ACADEMIC_CERTIFICATE
        assert CredentialType.parse(CredentialType.ACADEMIC_CERTIFICATE) is CredentialType.ACADEMIC_CERTIFICATE

    def test_unknown_type(self):
        with pytest.raises(UnknownCredentialTypeError):
            CredentialType.parse("DrivingLicence")


class TestEncode:
    """Layouts and deterministic encoding"""

    def test_student_layout(self):
        vector = message_codec.encode(
            CredentialType.STUDENT_ID, STUDENT, ISSUER, "2024-01-01T00:00:00.000Z", "ab" * 32
        )

        assert len(vector) == 8
        assert vector.messages[0] == b"Alice"
        assert vector.messages[4] == HOLDER.encode()
        assert vector.messages[5] == ISSUER.encode()
        assert vector.messages[7] == ("ab" * 32).encode()
        assert vector.field_index["documentHash"] == 7

    def test_academic_layout_has_fourteen_slots(self):
        vector = message_codec.encode(
            "AcademicCertificate", {"name": "Bob", "cgpa": 8.7}, ISSUER, "2024-01-01", "00"
        )

        assert len(vector) == 14
        assert vector.message_for("cgpa") == b"8.7"
        # absent fields keep their slot
        assert vector.message_for("degree") == b""
        assert vector.field_index["documentHash"] == 13

    def test_encoding_is_deterministic(self):
        args = (CredentialType.STUDENT_ID, STUDENT, ISSUER, "2024-01-01", "00")
        assert message_codec.encode(*args).messages == message_codec.encode(*args).messages

    def test_issuer_object_uses_id(self):
        plain = message_codec.encode(CredentialType.STUDENT_ID, STUDENT, ISSUER, "d", "h")
        nested = message_codec.encode(
            CredentialType.STUDENT_ID, STUDENT, {"id": ISSUER, "name": "Registrar"}, "d", "h"
        )
        assert plain.messages == nested.messages

    def test_aliases(self):
        attrs = dict(STUDENT)
        attrs["subjectId"] = attrs.pop("id")
        vector = message_codec.encode(CredentialType.STUDENT_ID, attrs, ISSUER, "d", "h")
        assert vector.message_for("id") == HOLDER.encode()

    @pytest.mark.parametrize("value,expected", [
        (None, b""),
        (True, b"true"),
        (False, b"false"),
        (7, b"7"),
        ("Ünïcode", "Ünïcode".encode("utf-8")),
        ({"b": 1, "a": [1, 2]}, b'{"a":[1,2],"b":1}'),
    ])
    def test_encode_value(self, value, expected):
        assert message_codec.encode_value(value) == expected

    def test_encode_credential_matches_encode(self):
        vc = {
            "type": ["VerifiableCredential", "StudentID"],
            "issuer": ISSUER,
            "issuanceDate": "2024-01-01",
            "credentialSubject": dict(STUDENT, documentHash="ff"),
        }
        direct = message_codec.encode(CredentialType.STUDENT_ID, STUDENT, ISSUER, "2024-01-01", "ff")
        assert message_codec.encode_credential(vc).messages == direct.messages


class TestIndexes:
    def setup_method(self):
        self.field_index = message_codec.field_index_for(CredentialType.STUDENT_ID)

    def test_indices_sorted_and_unique(self):
        indexes = message_codec.indices_for(
            ["department", "name", "department", "documentHash"], self.field_index
        )
        assert indexes == [0, 3, 7]

    def test_unknown_names_dropped_when_permissive(self):
        assert message_codec.indices_for(["name", "nickname"], self.field_index) == [0]

    def test_unknown_names_raise_when_strict(self):
        with pytest.raises(UnknownDisclosedFieldError):
            message_codec.indices_for(["name", "nickname"], self.field_index, strict=True)

    def test_names_for(self):
        assert message_codec.names_for([3, 0], self.field_index) == ["name", "department"]

    def test_missing_required(self):
        attrs = dict(STUDENT, rollNumber="")
        del attrs["department"]
        assert message_codec.missing_required(CredentialType.STUDENT_ID, attrs) == [
            "rollNumber", "department"
        ]
