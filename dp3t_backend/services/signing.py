"""
Signed export archives of published batches.

The archive is a zip file with two entries:

  * ``export.bin``: the 16 byte export header followed by the UTF-8 JSON
    encoding of the batch
  * ``export.sig``: JSON with the signature info and the base64 DER encoded
    ECDSA P-256/SHA-256 signature over ``export.bin``

This is a reference format, not the GAEN one. The entries carry JSON where
GAEN expects the ``TemporaryExposureKeyExport`` and ``TEKSignatureList``
protocol buffers, so the operating system frameworks cannot import these
archives. Deployments serving real apps plug in a :class:`BatchSigner` that
writes the protocol buffer format.
"""

__copyright__ = """
    Copyright 2020 EPFL

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.
"""
__license__ = "Apache 2.0"

import base64
import io
import json
import zipfile
from typing import Protocol, Sequence

from Cryptodome.Hash import SHA256
from Cryptodome.PublicKey import ECC
from Cryptodome.Signature import DSS

from dp3t_backend.model import GaenKey


#: Fixed header of every export.bin, padded to 16 bytes
EXPORT_HEADER = "EK Export v1    ".encode("ascii")

#: OID of ECDSA with SHA-256
SIGNATURE_ALGORITHM = "1.2.840.10045.4.3.2"

EXPORT_BIN = "export.bin"
EXPORT_SIG = "export.sig"


class BatchSigner(Protocol):
    def sign(self, keys: Sequence[GaenKey], key_date: int, published_until: int) -> bytes:
        """Return the signed binary payload of a batch"""


def export_payload(keys, key_date, published_until, region):
    """Serialize a batch into the content of export.bin

    Args:
        keys ([:obj:`GaenKey`]): Keys of the batch
        key_date (int): Requested day in UNIX epoch milliseconds
        published_until (int): Bucket boundary in UNIX epoch milliseconds
        region (str): Region code of the issuing backend
    """
    export = {
        "startTimestamp": key_date // 1000,
        "endTimestamp": published_until // 1000,
        "region": region,
        "batchNum": 1,
        "batchSize": 1,
        "keys": [
            {
                "keyData": key.key_data,
                "rollingStartIntervalNumber": key.rolling_start_number,
                "rollingPeriod": key.rolling_period,
                "transmissionRiskLevel": key.transmission_risk_level,
            }
            for key in keys
        ],
    }
    body = json.dumps(export, sort_keys=True, separators=(",", ":"))
    return EXPORT_HEADER + body.encode("utf-8")


class EcdsaBatchSigner:
    """Signs batches with an ECDSA P-256 key.

    Args:
        private_key (:obj:`Cryptodome.PublicKey.ECC.EccKey`, optional): Signing
            key. A fresh key is generated when missing, which is only useful
            for testing.
        key_id (str): Identifier of the verification key published to apps
        key_version (str): Version of the verification key
        region (str): Region code written into the export
    """

    def __init__(self, private_key=None, key_id="228", key_version="v1", region="ch"):
        if private_key is None:
            private_key = ECC.generate(curve="P-256")
        if not private_key.has_private():
            raise ValueError("Signing requires a private key")

        self.private_key = private_key
        self.key_id = key_id
        self.key_version = key_version
        self.region = region

    @property
    def public_key_pem(self):
        return self.private_key.public_key().export_key(format="PEM")

    def signature_info(self):
        return {
            "verificationKeyId": self.key_id,
            "verificationKeyVersion": self.key_version,
            "signatureAlgorithm": SIGNATURE_ALGORITHM,
        }

    def sign(self, keys, key_date, published_until):
        """Return the zip archive of a signed batch"""
        export_bin = export_payload(keys, key_date, published_until, self.region)

        signer = DSS.new(self.private_key, "fips-186-3", encoding="der")
        signature = signer.sign(SHA256.new(export_bin))

        export_sig = {
            "signatureInfo": self.signature_info(),
            "batchNum": 1,
            "batchSize": 1,
            "signature": base64.b64encode(signature).decode("ascii"),
        }

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(EXPORT_BIN, export_bin)
            archive.writestr(EXPORT_SIG, json.dumps(export_sig, sort_keys=True))
        return buffer.getvalue()


def verify_archive(archive_bytes, public_key):
    """Check the signature of an export archive and return its batch

    Args:
        archive_bytes (bytes): A zip archive as returned by :meth:`EcdsaBatchSigner.sign`
        public_key (:obj:`Cryptodome.PublicKey.ECC.EccKey`): Verification key

    Returns:
        dict: The decoded content of export.bin

    Raises:
        ValueError: If the archive is malformed or the signature does not verify
    """
    with zipfile.ZipFile(io.BytesIO(archive_bytes)) as archive:
        export_bin = archive.read(EXPORT_BIN)
        export_sig = json.loads(archive.read(EXPORT_SIG))

    if not export_bin.startswith(EXPORT_HEADER):
        raise ValueError("Missing export header")

    signature = base64.b64decode(export_sig["signature"])
    verifier = DSS.new(public_key, "fips-186-3", encoding="der")
    verifier.verify(SHA256.new(export_bin), signature)

    return json.loads(export_bin[len(EXPORT_HEADER) :].decode("utf-8"))
