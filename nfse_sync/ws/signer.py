from pathlib import Path
from lxml import etree
from signxml import XMLSigner, methods, SignatureMethod, DigestAlgorithm, CanonicalizationMethod
from nfse_sync.core.types import Credenciais

NS_DS = "http://www.w3.org/2000/09/xmldsig#"

class XmlSigningService:
    """Assinatura enveloped (RSA-SHA256, C14N 1.0) referenciando o Id do elemento informado."""

    def __init__(self, cert_pem_path:str, key_pem_path:str):
        self.cert_pem = Path(cert_pem_path).read_bytes()
        self.key_pem = Path(key_pem_path).read_bytes()

    @classmethod
    def from_credenciais(cls, cred:Credenciais) -> "XmlSigningService":
        return cls(cred.cert_path, cred.key_path)

    def _signer(self) -> XMLSigner:
        signer = XMLSigner(
            method=methods.enveloped,
            signature_algorithm=SignatureMethod.RSA_SHA256,
            digest_algorithm=DigestAlgorithm.SHA256,
            c14n_algorithm=CanonicalizationMethod.CANONICAL_XML_1_0,
        )
        # SEFIN espera <Signature xmlns="..."> sem prefixo ds:
        signer.namespaces = {None: NS_DS}
        return signer

    def sign(self, xml:str, tag:str="infPedReg") -> str:
        root = etree.fromstring(xml.encode("utf-8"))
        target = root if etree.QName(root).localname == tag else root.find(f".//{{*}}{tag}")
        if target is None:
            raise ValueError(f"Elemento {tag} nao encontrado para assinatura")
        ref = target.get("Id")
        signed = self._signer().sign(root, key=self.key_pem, cert=self.cert_pem,
                                     reference_uri=f"#{ref}" if ref else None)
        return etree.tostring(signed, encoding="unicode")
