"""
Unit tests for Lightning invoice backends.
"""

import base64
import hashlib
import hmac
from unittest.mock import MagicMock, patch

import pytest
import requests
from conftest import NODE_KEY

from payrail.errors import Timeout, Unavailable
from payrail.payments.bolt11 import decode_invoice
from payrail.payments.ln import LndRestBackend, LocalInvoiceSigner, build_invoice_backend

DESCRIPTION_HASH = hashlib.sha256(b"metadata").digest()


class TestLocalInvoiceSigner:
    def test_invoice_commits_to_amount_and_description_hash(self, invoice_signer):
        decoded = decode_invoice(invoice_signer.create_invoice(5_000, DESCRIPTION_HASH, 600))

        assert decoded.amount_msat == 5_000
        assert decoded.description_hash == DESCRIPTION_HASH
        assert decoded.expiry == 600
        assert decoded.payee_pubkey == invoice_signer.node_id

    def test_payment_hash_is_hash_of_derived_preimage(self, invoice_signer):
        decoded = decode_invoice(invoice_signer.create_invoice(5_000, DESCRIPTION_HASH, 600))

        preimage = invoice_signer.derive_preimage(decoded.payment_secret)
        assert hashlib.sha256(preimage).digest() == decoded.payment_hash
        assert preimage == hmac.new(
            bytes.fromhex(NODE_KEY), b"preimage:" + decoded.payment_secret, hashlib.sha256
        ).digest()

    def test_each_invoice_is_unique(self, invoice_signer):
        first = invoice_signer.create_invoice(5_000, DESCRIPTION_HASH, 600)
        second = invoice_signer.create_invoice(5_000, DESCRIPTION_HASH, 600)

        assert decode_invoice(first).payment_hash != decode_invoice(second).payment_hash

    def test_network_and_cltv_are_applied(self):
        signer = LocalInvoiceSigner(NODE_KEY, network="tb", min_final_cltv=80)
        invoice = signer.create_invoice(2_000, DESCRIPTION_HASH, 600)

        assert invoice.startswith("lntb20n1")
        assert decode_invoice(invoice).min_final_cltv == 80

    def test_missing_key_is_unavailable(self):
        signer = LocalInvoiceSigner(None)

        assert signer.node_id is None
        with pytest.raises(Unavailable):
            signer.create_invoice(5_000, DESCRIPTION_HASH, 600)

    def test_invalid_key_disables_signing(self):
        signer = LocalInvoiceSigner("00" * 32)

        with pytest.raises(Unavailable):
            signer.create_invoice(5_000, DESCRIPTION_HASH, 600)


class TestLndRestBackend:
    @pytest.fixture
    def backend(self):
        return LndRestBackend("https://lnd.local:8080/", "abcd", timeout_ms=2_000)

    def test_create_invoice_posts_to_lnd(self, backend):
        response = MagicMock(status_code=200)
        response.json.return_value = {"payment_request": "lnbc20n1xyz"}

        with patch("payrail.payments.ln.requests.post", return_value=response) as mock_post:
            assert backend.create_invoice(2_000, DESCRIPTION_HASH, 600) == "lnbc20n1xyz"

        args, kwargs = mock_post.call_args
        assert args[0] == "https://lnd.local:8080/v1/invoices"
        assert kwargs["json"] == {
            "value_msat": "2000",
            "description_hash": base64.b64encode(DESCRIPTION_HASH).decode("ascii"),
            "expiry": "600",
        }
        assert kwargs["headers"] == {"Grpc-Metadata-macaroon": "abcd"}
        assert kwargs["timeout"] == 2.0

    def test_timeout(self, backend):
        with patch("payrail.payments.ln.requests.post", side_effect=requests.Timeout("slow")):
            with pytest.raises(Timeout):
                backend.create_invoice(2_000, DESCRIPTION_HASH, 600)

    def test_connection_error(self, backend):
        with patch("payrail.payments.ln.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(Unavailable):
                backend.create_invoice(2_000, DESCRIPTION_HASH, 600)

    def test_error_status(self, backend):
        with patch("payrail.payments.ln.requests.post", return_value=MagicMock(status_code=500)):
            with pytest.raises(Unavailable):
                backend.create_invoice(2_000, DESCRIPTION_HASH, 600)

    def test_missing_payment_request(self, backend):
        response = MagicMock(status_code=200)
        response.json.return_value = {}

        with patch("payrail.payments.ln.requests.post", return_value=response):
            with pytest.raises(Unavailable):
                backend.create_invoice(2_000, DESCRIPTION_HASH, 600)

    def test_non_json_body(self, backend):
        response = MagicMock(status_code=200)
        response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")

        with patch("payrail.payments.ln.requests.post", return_value=response):
            with pytest.raises(Unavailable):
                backend.create_invoice(2_000, DESCRIPTION_HASH, 600)

    @pytest.mark.parametrize("body", [["lnbc20n1xyz"], "lnbc20n1xyz", {"payment_request": 42}])
    def test_unexpected_body_shape(self, backend, body):
        response = MagicMock(status_code=200)
        response.json.return_value = body

        with patch("payrail.payments.ln.requests.post", return_value=response):
            with pytest.raises(Unavailable):
                backend.create_invoice(2_000, DESCRIPTION_HASH, 600)

    def test_missing_macaroon(self):
        with pytest.raises(Unavailable):
            LndRestBackend("https://lnd.local:8080", None).create_invoice(2_000, DESCRIPTION_HASH, 600)

    def test_missing_url(self):
        with pytest.raises(Unavailable):
            LndRestBackend("", "abcd").create_invoice(2_000, DESCRIPTION_HASH, 600)


class TestBuildInvoiceBackend:
    def test_local_backend(self):
        backend = build_invoice_backend({"LN_BACKEND": "local", "LN_NODE_PRIVATE_KEY": NODE_KEY})

        assert isinstance(backend, LocalInvoiceSigner)
        assert backend.node_id is not None

    def test_lnd_backend(self):
        backend = build_invoice_backend(
            {"LN_BACKEND": "lnd_rest", "LND_REST_URL": "https://lnd.local", "LND_MACAROON": "abcd"}
        )

        assert isinstance(backend, LndRestBackend)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_invoice_backend({"LN_BACKEND": "carrier-pigeon"})
