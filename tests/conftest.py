from __future__ import annotations

import base64
import gzip
import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DB_URL", "sqlite:///:memory:")

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nfse_sync.core.types import Credenciais, NsuRecord, Page
from nfse_sync.models import Base
from nfse_sync.store import db as db_store


test_engine = create_engine(
    "sqlite:///:memory:",
    future=True,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Ensure application code uses the test engine
db_store.engine = test_engine  # type: ignore[assignment]
db_store.SessionLocal.configure(bind=test_engine)

TestSession = sessionmaker(bind=test_engine, autoflush=False, future=True)

CNPJ = "12.345.678/0001-95"
CHAVE = "1" * 50


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield


@pytest.fixture
def cred():
    return Credenciais(cnpj=CNPJ, ambiente="homolog", cert_path="cert.pem", key_path="key.pem")


def gz_b64(xml: str) -> str:
    return base64.b64encode(gzip.compress(xml.encode("utf-8"))).decode("ascii")


def nfse_doc(nsu: int) -> NsuRecord:
    xml = f'<?xml version="1.0" encoding="UTF-8"?><NFSe xmlns="http://www.sped.fazenda.gov.br/nfse"><nNFSe>{nsu}</nNFSe></NFSe>'
    return NsuRecord(nsu=nsu, documento=gz_b64(xml), raw={"NSU": nsu, "TipoDocumento": "NFSE"})


def evento_doc(nsu: int, prefix: str = "ns:") -> NsuRecord:
    xml = f'<{prefix}evento xmlns:ns="http://www.sped.fazenda.gov.br/nfse"><infEvento/></{prefix}evento>'
    return NsuRecord(nsu=nsu, documento=gz_b64(xml), raw={"NSU": nsu, "TipoDocumento": "EVENTO"})


def page_of(nsus, maior=None, ultimo=None) -> Page:
    return Page(records=[nfse_doc(n) for n in nsus], maior_nsu=maior, ultimo_nsu=ultimo)


class FakeDistribuicao:
    """Stub of the ADN client: serves pages by cursor and records every call."""

    def __init__(self, responder):
        self.responder = responder
        self.calls: list[tuple[int, str | None]] = []

    def __call__(self, cred):
        return self

    def fetch_page(self, nsu, cnpj_consulta=None):
        self.calls.append((nsu, cnpj_consulta))
        out = self.responder(nsu, len(self.calls))
        if isinstance(out, Exception):
            raise out
        return out


class FakeFeed:
    """A contiguous NSU feed 1..total served in batches, like the ADN."""

    def __init__(self, total: int, batch: int = 100, report_maior: bool = True):
        self.total = total
        self.batch = batch
        self.report_maior = report_maior

    def __call__(self, nsu, call_no):
        start = max(nsu, 1)
        nsus = list(range(start, min(start + self.batch - 1, self.total) + 1))
        return page_of(nsus, maior=self.total if self.report_maior else None)


def make_pfx(serial_number: str, password: str = "senha") -> bytes:
    """Self-signed A1-like PFX whose subject serialNumber carries the CNPJ/CPF."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, "ACME LTDA"),
        x509.NameAttribute(NameOID.SERIAL_NUMBER, serial_number),
    ])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(b"acme", key, cert, None, BestAvailableEncryption(password.encode()))
