import pytest
import requests

from conftest import CHAVE, gz_b64
from nfse_sync.core.types import Credenciais
from nfse_sync.ws.nfse_client import NFSeNacionalClient, NfseClientError, RateLimited


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b"", text=None):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.text = text if text is not None else (str(json_data) if json_data is not None else content.decode("latin-1"))

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, timeout=None, **kw):
        self.requests.append((method, url, kw))
        out = self.responses.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def client_with(*responses, ambiente="homolog"):
    cred = Credenciais(cnpj="12345678000195", ambiente=ambiente, cert_path="c.pem", key_path="k.pem")
    session = FakeSession(*responses)
    return NFSeNacionalClient(cred, session=session, verify_ca=False), session


def test_fetch_page_parses_lote():
    doc = gz_b64("<NFSe/>")
    client, session = client_with(FakeResponse(200, {
        "StatusProcessamento": "DOCUMENTOS_LOCALIZADOS",
        "LoteDFe": [{"NSU": 7, "ChaveAcesso": CHAVE, "ArquivoXml": doc}],
        "MaiorNSU": 90,
    }))
    page = client.fetch_page(7, "12345678000195")
    method, url, kw = session.requests[0]
    assert method == "GET"
    assert url == "https://adn.producaorestrita.nfse.gov.br/contribuintes/DFe/7"
    assert kw["params"] == {"lote": "true", "cnpjConsulta": "12345678000195"}
    assert session.cert == ("c.pem", "k.pem")
    assert [r.nsu for r in page.records] == [7]
    assert page.records[0].documento == doc
    assert page.records[0].raw["ChaveAcesso"] == CHAVE
    assert page.maior_nsu == 90
    assert page.ultimo_nsu is None


def test_fetch_page_without_filter_and_production_host():
    client, session = client_with(FakeResponse(200, {"LoteDFe": []}), ambiente="prod")
    client.fetch_page(1)
    _, url, kw = session.requests[0]
    assert url.startswith("https://adn.nfse.gov.br/")
    assert "cnpjConsulta" not in kw["params"]


def test_fetch_page_no_documents_is_empty_page():
    client, _ = client_with(FakeResponse(404, {"StatusProcessamento": "NENHUM_DOCUMENTO_LOCALIZADO"}))
    page = client.fetch_page(500)
    assert page.records == []


def test_fetch_page_429_raises_rate_limited():
    client, _ = client_with(FakeResponse(429, None, text="Too Many Requests"))
    with pytest.raises(RateLimited) as exc:
        client.fetch_page(1)
    assert exc.value.status_code == 429
    assert "429" in str(exc.value)


def test_error_list_is_in_message():
    client, _ = client_with(FakeResponse(400, {"erros": [{"Codigo": "E1235", "Descricao": "xDesc invalido"}]}))
    with pytest.raises(NfseClientError, match="E1235 - xDesc invalido"):
        client.submit_event(CHAVE, "payload")


def test_transport_exception_is_wrapped():
    client, _ = client_with(requests.ConnectionError("conexao recusada"))
    with pytest.raises(NfseClientError, match="conexao recusada"):
        client.fetch_page(1)


def test_fetch_invoice_xml_absent_is_none():
    client, _ = client_with(FakeResponse(404, {"erro": "nao encontrada"}))
    assert client.fetch_invoice_xml(CHAVE) is None


def test_fetch_invoice_xml_returns_payload():
    client, session = client_with(FakeResponse(200, {"nfseXmlGZipB64": "H4sI"}))
    assert client.fetch_invoice_xml(CHAVE) == "H4sI"
    assert session.requests[0][1] == f"https://sefin.producaorestrita.nfse.gov.br/SefinNacional/nfse/{CHAVE}"


def test_fetch_danfse_pdf():
    client, session = client_with(FakeResponse(200, None, content=b"%PDF-1.4"))
    assert client.fetch_danfse_pdf(CHAVE) == b"%PDF-1.4"
    assert session.requests[0][1].endswith(f"/danfse/{CHAVE}")


def test_fetch_danfse_pdf_raises_on_failure():
    client, _ = client_with(FakeResponse(500, None, content=b"", text="erro"))
    with pytest.raises(NfseClientError):
        client.fetch_danfse_pdf(CHAVE)


def test_submit_event_posts_payload():
    client, session = client_with(FakeResponse(201, {"eventoXmlGZipB64": "H4sI"}))
    ack = client.submit_event(CHAVE, "cGF5bG9hZA==")
    method, url, kw = session.requests[0]
    assert method == "POST"
    assert url.endswith(f"/nfse/{CHAVE}/eventos")
    assert kw["json"] == {"pedidoRegistroEventoXmlGZipB64": "cGF5bG9hZA=="}
    assert ack == {"eventoXmlGZipB64": "H4sI"}
