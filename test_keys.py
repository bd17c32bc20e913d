from __future__ import annotations

import logging
import unittest
from pathlib import Path

import requests
from Cryptodome.PublicKey import ECC, RSA

from tgzx.errors import FetchFailed, KeyParseError, NoValidKeys, ParseIdentityFailed, UnsupportedKeyType
from tgzx.keys import fetch_keys, resolve
from tgzx.pipeline import load_identity
from tgzx.sshkeys import KeyType, openssh_blob, parse_identity, parse_recipient, ssh_tag, tag_matches


class _Response:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text


class _Session:
    """Stands in for requests.Session; records requested URLs."""

    def __init__(self, response=None, exc: Exception | None = None):
        self.response = response
        self.exc = exc
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        if self.exc is not None:
            raise self.exc
        return self.response


class KeyFixtures(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.rsa = RSA.generate(2048)
        cls.ed = ECC.generate(curve="Ed25519")
        cls.ecdsa = ECC.generate(curve="P-256")
        cls.rsa_line = cls.rsa.publickey().export_key(format="OpenSSH").decode() + " rsa@test"
        cls.ed_line = cls.ed.public_key().export_key(format="OpenSSH") + " ed@test"
        cls.ecdsa_line = cls.ecdsa.public_key().export_key(format="OpenSSH")


class TestParseRecipient(KeyFixtures):
    def test_rsa_line(self):
        r = parse_recipient(self.rsa_line)
        self.assertIs(r.key_type, KeyType.RSA)
        self.assertEqual(r.key.n, self.rsa.n)
        self.assertEqual(r.key_type.ssh_name, "ssh-rsa")

    def test_ed25519_line(self):
        r = parse_recipient(self.ed_line)
        self.assertIs(r.key_type, KeyType.ED25519)
        self.assertTrue(tag_matches(r.ssh_blob, r.tag))

    def test_ecdsa_is_unsupported(self):
        with self.assertRaises(UnsupportedKeyType):
            parse_recipient(self.ecdsa_line)

    def test_small_rsa_is_unsupported(self):
        small = RSA.generate(1024)
        with self.assertRaises(UnsupportedKeyType):
            parse_recipient(small.publickey().export_key(format="OpenSSH").decode())

    def test_malformed_lines(self):
        for line in ("ssh-rsa", "ssh-rsa not_base64!!", "ssh-ed25519 AAAA", "garbage"):
            with self.subTest(line=line):
                with self.assertRaises(KeyParseError):
                    parse_recipient(line)

    def test_type_mismatch(self):
        b64 = self.rsa_line.split()[1]
        with self.assertRaises(KeyParseError):
            parse_recipient(f"ssh-ed25519 {b64}")

    def test_tag_is_stable(self):
        a = parse_recipient(self.ed_line)
        b = parse_recipient(self.ed_line.rsplit(" ", 1)[0])
        self.assertEqual(a.tag, b.tag)
        self.assertEqual(a.tag, ssh_tag(a.ssh_blob))
        self.assertFalse(tag_matches(a.ssh_blob, parse_recipient(self.rsa_line).tag))


class TestParseIdentity(KeyFixtures):
    def test_rsa_pem(self):
        ident = parse_identity(self.rsa.export_key(format="PEM"))
        self.assertIs(ident.key_type, KeyType.RSA)
        self.assertEqual(ident.tag, parse_recipient(self.rsa_line).tag)

    def test_ed25519_pkcs8(self):
        ident = parse_identity(self.ed.export_key(format="PEM").encode())
        self.assertIs(ident.key_type, KeyType.ED25519)
        self.assertEqual(ident.tag, parse_recipient(self.ed_line).tag)

    def test_encrypted_rsa_requires_passphrase(self):
        pem = self.rsa.export_key(format="PEM", passphrase="s3cret", pkcs=8, protection="scryptAndAES128-CBC")
        with self.assertRaises(ParseIdentityFailed):
            parse_identity(pem)
        self.assertIs(parse_identity(pem, passphrase="s3cret").key_type, KeyType.RSA)

    def test_public_key_rejected(self):
        with self.assertRaises(ParseIdentityFailed):
            parse_identity(self.rsa.publickey().export_key(format="PEM"))
        with self.assertRaises(ParseIdentityFailed):
            parse_identity(self.ed.public_key().export_key(format="PEM").encode())

    def test_unsupported_curve_rejected(self):
        with self.assertRaises(ParseIdentityFailed):
            parse_identity(self.ecdsa.export_key(format="PEM").encode())

    def test_garbage_rejected(self):
        with self.assertRaises(ParseIdentityFailed):
            parse_identity(b"not a key")


TESTDATA = Path(__file__).resolve().parent / "testdata"
TESTDATA_PASSPHRASE = "tgzx-test"


class TestOpenSSHIdentity(unittest.TestCase):
    """Private keys written by ssh-keygen in the openssh-key-v1 format."""

    def _recipient(self, name):
        return parse_recipient((TESTDATA / f"{name}.pub").read_text())

    def test_ed25519_unencrypted(self):
        ident = load_identity(str(TESTDATA / "id_ed25519"))
        self.assertIs(ident.key_type, KeyType.ED25519)
        self.assertEqual(ident.tag, self._recipient("id_ed25519").tag)
        self.assertEqual(ident.ssh_blob, self._recipient("id_ed25519").ssh_blob)

    def test_ed25519_with_passphrase(self):
        ident = load_identity(str(TESTDATA / "id_ed25519_enc"), TESTDATA_PASSPHRASE)
        self.assertIs(ident.key_type, KeyType.ED25519)
        self.assertEqual(ident.tag, self._recipient("id_ed25519_enc").tag)

    def test_rsa_with_passphrase(self):
        ident = load_identity(str(TESTDATA / "id_rsa"), TESTDATA_PASSPHRASE)
        self.assertIs(ident.key_type, KeyType.RSA)
        self.assertEqual(ident.key.size_in_bits(), 2048)
        # matches `ssh-keygen -lf id_rsa.pub`: SHA256:MKXkNjvG...
        self.assertEqual(ident.tag, "MKXkNg")
        self.assertEqual(ident.tag, self._recipient("id_rsa").tag)

    def test_missing_or_wrong_passphrase(self):
        for name in ("id_rsa", "id_ed25519_enc"):
            with self.subTest(name=name):
                with self.assertRaises(ParseIdentityFailed):
                    load_identity(str(TESTDATA / name))
                with self.assertRaises(ParseIdentityFailed):
                    load_identity(str(TESTDATA / name), "not-the-passphrase")

    def test_public_key_file_rejected(self):
        with self.assertRaises(ParseIdentityFailed):
            load_identity(str(TESTDATA / "id_ed25519.pub"))

    def test_blob_matches_authorized_keys_line(self):
        for name in ("id_ed25519", "id_rsa"):
            with self.subTest(name=name):
                recipient = self._recipient(name)
                self.assertEqual(openssh_blob(recipient.key), recipient.ssh_blob)


class TestResolve(KeyFixtures):
    def test_testuser_rsa_and_ecdsa(self):
        listing = f"{self.rsa_line}\n{self.ecdsa_line}\n"
        with self.assertLogs("tgzx.keys", level="WARNING") as cm:
            recipients = resolve("testuser", fetch=lambda user: listing)
        self.assertEqual(len(recipients), 1)
        self.assertIs(recipients[0].key_type, KeyType.RSA)
        self.assertTrue(any("Skipping unsupported key" in m for m in cm.output))

    def test_malformed_line_skipped_order_kept(self):
        listing = f"{self.ed_line}\n\n   \nssh-rsa @@@@\n{self.rsa_line}\n{self.ed_line}\n"
        recipients = resolve("alice", fetch=lambda user: listing, log=logging.getLogger("test.resolve"))
        self.assertEqual([r.key_type for r in recipients], [KeyType.ED25519, KeyType.RSA, KeyType.ED25519])

    def test_warning_truncates_key(self):
        line = "ssh-rsa " + "A" * 200
        with self.assertLogs("tgzx.keys", level="WARNING") as cm:
            resolve("bob", fetch=lambda user: f"{line}\n{self.rsa_line}")
        self.assertNotIn("A" * 100, "\n".join(cm.output))

    def test_blank_listing(self):
        with self.assertRaises(NoValidKeys) as cm:
            resolve("nobody", fetch=lambda user: "\n\n")
        self.assertIn("nobody", str(cm.exception))

    def test_only_unsupported(self):
        with self.assertLogs("tgzx.keys", level="WARNING"):
            with self.assertRaises(NoValidKeys):
                resolve("ecdsa-only", fetch=lambda user: self.ecdsa_line)

    def test_fetch_failed_propagates(self):
        def failing(user):
            raise FetchFailed(user, "HTTP 404")

        with self.assertRaises(FetchFailed) as cm:
            resolve("ghost", fetch=failing)
        self.assertIn("HTTP 404", str(cm.exception))

    def test_other_fetch_errors_wrapped(self):
        def failing(user):
            raise OSError("connection reset")

        with self.assertRaises(FetchFailed):
            resolve("ghost", fetch=failing)


class TestFetchKeys(unittest.TestCase):
    def test_ok(self):
        session = _Session(_Response(200, "ssh-ed25519 AAAA\n"))
        self.assertEqual(fetch_keys("octo cat", session=session), "ssh-ed25519 AAAA\n")
        self.assertEqual(session.urls, ["https://github.com/octo%20cat.keys"])

    def test_custom_template(self):
        session = _Session(_Response(200, ""))
        fetch_keys("u/../x", session=session, url_template="http://127.0.0.1:1/{}/keys")
        self.assertEqual(session.urls, ["http://127.0.0.1:1/u%2F..%2Fx/keys"])

    def test_non_200(self):
        for code in (404, 500):
            with self.subTest(code=code):
                with self.assertRaises(FetchFailed) as cm:
                    fetch_keys("someone", session=_Session(_Response(code)))
                self.assertIn(str(code), str(cm.exception))
                self.assertIn("someone", str(cm.exception))

    def test_transport_error(self):
        session = _Session(exc=requests.ConnectionError("refused"))
        with self.assertRaises(FetchFailed):
            fetch_keys("someone", session=session)


if __name__ == "__main__":
    unittest.main()
