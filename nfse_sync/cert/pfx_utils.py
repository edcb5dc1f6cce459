from contextlib import contextmanager
from typing import Iterator, Tuple
from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography import x509
from cryptography.x509.oid import NameOID
import tempfile, os

OID_CNPJ = "2.16.76.1.3.3"
OID_CPF = "2.16.76.1.3.1"

def _load(pfx_bytes: bytes, password: str):
    return pkcs12.load_key_and_certificates(pfx_bytes, password.encode("utf-8") if password else None)

def pfx_to_pem_tempfiles(pfx_bytes: bytes, password: str) -> Tuple[str, str]:
    key, cert, chain = _load(pfx_bytes, password)
    if not key or not cert: raise ValueError("PFX invalido/senha incorreta")
    certs = [cert.public_bytes(Encoding.PEM)]
    if chain:
        for c in chain: certs.append(c.public_bytes(Encoding.PEM))
    cert_fd, cert_path = tempfile.mkstemp(suffix=".pem"); os.write(cert_fd, b"".join(certs)); os.close(cert_fd)
    key_fd, key_path = tempfile.mkstemp(suffix=".pem"); os.write(key_fd, key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())); os.close(key_fd)
    return cert_path, key_path

@contextmanager
def pem_tempfiles(pfx_bytes: bytes, password: str) -> Iterator[Tuple[str, str]]:
    """Como pfx_to_pem_tempfiles, removendo os PEM ao sair."""
    paths = pfx_to_pem_tempfiles(pfx_bytes, password)
    try:
        yield paths
    finally:
        for p in paths:
            if p and os.path.exists(p):
                os.remove(p)

def pfx_extract_cnpj_cpf(pfx_bytes: bytes, password: str):
    """Extrai CNPJ ou CPF do certificado a partir do PFX.
    Retorna tuple (tipo, valor_digits) onde tipo em {"CNPJ","CPF"} ou (None, None).
    """
    key, cert, chain = _load(pfx_bytes, password)
    if not cert:
        raise ValueError("Certificado ausente no PFX")
    return cert_extract_cnpj_cpf(cert)

def cert_extract_cnpj_cpf(cert: x509.Certificate):
    # ICP-Brasil: OtherName no SubjectAlternativeName
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = []
    for gn in san:
        if not isinstance(gn, x509.OtherName):
            continue
        txt = gn.value.decode(errors="ignore") if isinstance(gn.value, (bytes, bytearray)) else str(gn.value)
        digits = "".join(ch for ch in txt if ch.isdigit())
        oid = gn.type_id.dotted_string
        if oid == OID_CNPJ and len(digits) >= 14:
            return ("CNPJ", digits[-14:])
        if oid == OID_CPF and len(digits) >= 11:
            return ("CPF", digits[-11:])
    # Fallback: serialNumber (2.5.4.5) no Subject
    for attr in cert.subject:
        if attr.oid == NameOID.SERIAL_NUMBER:
            digits = "".join(ch for ch in str(attr.value) if ch.isdigit())
            if len(digits) >= 14:
                return ("CNPJ", digits[-14:])
            if len(digits) >= 11:
                return ("CPF", digits[-11:])
    return (None, None)
